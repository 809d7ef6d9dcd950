import asyncio
import os
import signal
import subprocess
import time
from pathlib import Path

import pytest

from zellij_detect.config import DEFAULT_MARKER, DetectionConfig
from zellij_detect.errors import InvalidInput
from zellij_detect.registry import ResourceRegistry
from zellij_detect.service import DetectionService
from zellij_detect.watcher import OutcomeKind, SourceKind, WatchRequest, watch
from zellij_detect.wrapper import (
    WrapperGenerator,
    WrapperSpec,
    find_marker,
    marker_line,
    marker_token,
    parse_status,
)


def _generator(tmp: Path) -> WrapperGenerator:
    return WrapperGenerator(DetectionConfig(tmp_dir=tmp, kill_grace_seconds=1))


def _status(artifacts) -> str:
    return artifacts.status_path.read_text(encoding="utf-8")


def _run(artifacts, *args, timeout=20):
    return subprocess.run([str(artifacts.script_path), *args], capture_output=True, text=True, timeout=timeout)


def _wait_for_status(path: Path, limit: float = 5.0) -> str:
    deadline = time.monotonic() + limit
    while time.monotonic() < deadline:
        if path.exists():
            text = path.read_text(encoding="utf-8")
            if text:
                return text
        time.sleep(0.02)
    raise AssertionError(f"status file never appeared: {path}")


def test_generate_writes_executable_script(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="q1", command="echo hello"))
    assert art.script_path == isolated_dirs / "llm-wrapper-q1.sh"
    assert art.status_path == isolated_dirs / "llm-status-q1"
    assert art.marker == DEFAULT_MARKER
    assert os.access(art.script_path, os.X_OK)
    assert subprocess.run(["bash", "-n", str(art.script_path)]).returncode == 0
    d = art.to_dict()
    assert d["timeout_ms"] == 60000
    assert "Usage:" in d["message"]


def test_successful_command_reports_complete(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="ok", command="echo hello"))
    proc = _run(art)
    assert proc.returncode == 0
    assert proc.stdout.splitlines() == ["hello", "<<<LLM_COMPLETE:0>>>"]
    status = parse_status(_status(art))
    assert (status.state, status.exit_code) == ("complete", 0)
    assert find_marker(proc.stdout, art.marker) == 0
    assert not list(isolated_dirs.glob("llm-output-*"))


def test_arguments_are_forwarded(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="args", command="echo"))
    proc = _run(art, "what", "is", "2+2")
    assert proc.stdout.splitlines()[0] == "what is 2+2"


def test_failing_command_reports_error(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="bad", command="false"))
    proc = _run(art)
    assert proc.returncode == 1
    assert _status(art).splitlines()[0] == "error:1"
    assert find_marker(proc.stdout, art.marker) == 1


def test_timeout_writes_timeout_without_marker(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="slow", command="sleep 5", timeout=1.0))
    start = time.monotonic()
    proc = _run(art)
    assert time.monotonic() - start < 4.0
    assert proc.returncode == 124
    assert find_marker(proc.stdout, art.marker) is None
    assert _status(art).splitlines()[0] == "timeout"
    # the terminal value is final
    mtime = art.status_path.stat().st_mtime_ns
    time.sleep(0.3)
    assert art.status_path.stat().st_mtime_ns == mtime
    assert not list(isolated_dirs.glob("llm-status-slow.tmp*"))


def test_partial_output_survives_timeout(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="partial", command="bash -c", timeout=1.0))
    proc = _run(art, "echo partial; sleep 5")
    assert proc.returncode == 124
    assert proc.stdout.splitlines() == ["partial"]
    assert _status(art).splitlines()[0] == "timeout"


def test_output_streams_before_command_exits(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="live", command="bash -c"))
    proc = subprocess.Popen([str(art.script_path), "echo early; sleep 2; echo late"],
                            stdout=subprocess.PIPE, text=True)
    try:
        first = proc.stdout.readline()
        assert first == "early\n"
        # still running, so the line arrived live rather than as a replay
        assert parse_status(_status(art)).state == "running"
        rest = proc.stdout.read()
        assert proc.wait(timeout=10) == 0
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        proc.stdout.close()
    assert rest.splitlines() == ["late", "<<<LLM_COMPLETE:0>>>"]


def test_custom_marker_and_no_marker(isolated_dirs: Path):
    gen = _generator(isolated_dirs)
    custom = gen.generate(WrapperSpec(name="custom", command="echo hi", marker="DONE_X"))
    out = _run(custom).stdout
    assert "<<<DONE_X:0>>>" in out
    assert find_marker(out, "DONE_X") == 0

    quiet = gen.generate(WrapperSpec(name="quiet", command="echo hi", emit_marker=False))
    proc = _run(quiet)
    assert proc.stdout == "hi\n"
    assert parse_status(_status(quiet)).state == "complete"


def test_sigterm_reports_error_143(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="term", command="sleep 10"))
    proc = subprocess.Popen([str(art.script_path)], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    try:
        assert _wait_for_status(art.status_path).startswith("running")
        time.sleep(0.3)
        proc.send_signal(signal.SIGTERM)
        assert proc.wait(timeout=5) == 143
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
    assert _status(art).splitlines()[0] == "error:143"
    assert not list(isolated_dirs.glob("llm-output-*"))


def test_watcher_sees_running_then_complete(isolated_dirs: Path):
    art = _generator(isolated_dirs).generate(WrapperSpec(name="watched", command="sleep 0.5"))
    proc = subprocess.Popen([str(art.script_path)], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    try:
        first = _wait_for_status(art.status_path)
        assert parse_status(first).state == "running"
        req = WatchRequest(target=str(art.status_path), kind=SourceKind.FILE,
                           patterns=("error:", "timeout", "complete:"), timeout=5.0)
        outcome = asyncio.run(watch(req, ResourceRegistry(), DetectionConfig(file_poll_interval=0.02)))
        assert outcome.kind == OutcomeKind.MATCHED
        assert outcome.pattern == "complete:"
        assert proc.wait(timeout=5) == 0
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_parse_status_values():
    assert str(parse_status("running\n2024-01-01T00:00:00+00:00: Starting q")) == "running"
    assert not parse_status("running").terminal
    done = parse_status("complete:0\n")
    assert (done.state, done.exit_code, done.terminal) == ("complete", 0, True)
    assert parse_status("error:143").exit_code == 143
    assert parse_status("timeout").exit_code is None
    for bad in ["", "complete:", "done", "error:x", "Running"]:
        with pytest.raises(InvalidInput):
            parse_status(bad)


def test_marker_helpers():
    assert marker_token("<<<LLM_COMPLETE>>>") == "LLM_COMPLETE"
    assert marker_token("PLAIN") == "PLAIN"
    assert marker_line(DEFAULT_MARKER) == "<<<LLM_COMPLETE>>>"
    assert marker_line(DEFAULT_MARKER, 2) == "<<<LLM_COMPLETE:2>>>"
    assert find_marker("no marker here", DEFAULT_MARKER) is None
    assert find_marker("x\n<<<LLM_COMPLETE>>>\n", DEFAULT_MARKER) == 0
    assert find_marker("<<<LLM_COMPLETE:1>>>\n<<<LLM_COMPLETE:7>>>", "LLM_COMPLETE") == 7
    assert find_marker("<<<OTHER:3>>>", DEFAULT_MARKER) is None


@pytest.mark.parametrize("spec", [
    WrapperSpec(name="has space", command="echo"),
    WrapperSpec(name="x" * 33, command="echo"),
    WrapperSpec(name="dots.no", command="echo"),
    WrapperSpec(name="ok", command="echo", marker="M" * 65),
    WrapperSpec(name="ok", command="echo", marker="   "),
    WrapperSpec(name="ok", command="echo", timeout=0.5),
    WrapperSpec(name="ok", command="echo", timeout=3601.0),
    WrapperSpec(name="ok", command="  "),
])
def test_generate_rejects_invalid_specs(isolated_dirs: Path, spec):
    with pytest.raises(InvalidInput):
        _generator(isolated_dirs).generate(spec)
    assert not list(isolated_dirs.glob("llm-wrapper-*"))


def test_service_checks_command_and_bounds(isolated_dirs: Path):
    svc = DetectionService(config=DetectionConfig(tmp_dir=isolated_dirs))
    with pytest.raises(InvalidInput):
        svc.create_llm_wrapper("w", "echo hi; rm -rf x")
    with pytest.raises(InvalidInput):
        svc.create_llm_wrapper("w", "echo hi", timeout_ms=999)
    art = svc.create_llm_wrapper("w", "echo hi", detect_marker="<<<FIN>>>", timeout_ms=2000)
    assert art.marker == "<<<FIN>>>"
    assert art.timeout == 2.0
    assert "TIMEOUT_SECS=2\n" in art.script_path.read_text(encoding="utf-8")
