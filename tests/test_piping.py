import asyncio
import os
import stat
from pathlib import Path

import pytest

from zellij_detect.config import DetectionConfig
from zellij_detect.errors import DetectionError, InvalidInput
from zellij_detect.piping import create_named_pipe
from zellij_detect.registry import EntryKind
from zellij_detect.service import DetectionService
from zellij_detect.watcher import OutcomeKind


def _service(tmp: Path) -> DetectionService:
    return DetectionService(config=DetectionConfig(tmp_dir=tmp, kill_grace_seconds=1), record_usage=False)


def test_create_named_pipe_with_exact_mode(isolated_dirs: Path):
    path = create_named_pipe("p1", "0640", DetectionConfig(tmp_dir=isolated_dirs))
    assert path == isolated_dirs / "zellij-pipe-p1"
    st = os.stat(path)
    assert stat.S_ISFIFO(st.st_mode)
    assert stat.S_IMODE(st.st_mode) == 0o640


def test_create_named_pipe_twice_fails(isolated_dirs: Path):
    cfg = DetectionConfig(tmp_dir=isolated_dirs)
    create_named_pipe("dup", config=cfg)
    with pytest.raises(DetectionError) as ei:
        create_named_pipe("dup", config=cfg)
    assert "already exists" in str(ei.value)
    assert ei.value.code == "error"


@pytest.mark.parametrize("name,mode", [
    ("ok", "666"),
    ("ok", "0999"),
    ("ok", "rw-rw-rw-"),
    ("a/b", "0666"),
    ("..", "0666"),
    ("x" * 65, "0666"),
    ("", "0666"),
])
def test_create_named_pipe_rejects_bad_input(isolated_dirs: Path, name, mode):
    with pytest.raises(InvalidInput):
        create_named_pipe(name, mode, DetectionConfig(tmp_dir=isolated_dirs))
    assert not list(isolated_dirs.iterdir())


def test_piped_command_feeds_a_pipe_watch(isolated_dirs: Path):
    svc = _service(isolated_dirs)
    fifo = svc.create_named_pipe("feed")

    async def run_case():
        watch_task = asyncio.create_task(svc.watch_pipe(str(fifo), ["DONE"], 5000))
        await asyncio.sleep(0.1)
        result = await svc.pipe_with_timeout("echo DONE", str(fifo), 5000)
        return result, await watch_task

    result, outcome = asyncio.run(run_case())
    assert result.exit_code == 0
    assert not result.timed_out
    assert outcome.kind == OutcomeKind.MATCHED
    assert outcome.pattern == "DONE"
    assert svc.active() == []


def test_piped_command_without_reader_times_out(isolated_dirs: Path):
    svc = _service(isolated_dirs)
    fifo = svc.create_named_pipe("nobody")
    result = asyncio.run(svc.pipe_with_timeout("echo hi", str(fifo), 1000))
    assert result.timed_out
    assert result.exit_code is None
    assert 0.9 <= result.elapsed < 4.0
    assert result.to_dict()["ok"] is True
    assert len(svc.registry) == 0


@pytest.mark.parametrize("command,target,timeout_ms", [
    ("echo hi; rm x", "/tmp/zellij-pipe-x", 1000),
    ("echo $(id)", "/tmp/zellij-pipe-x", 1000),
    ("cat ../secret", "/tmp/zellij-pipe-x", 1000),
    ("echo hi", "/tmp/../x", 1000),
    ("echo hi", "/tmp/zellij-pipe-x", 999),
    ("echo hi", "/tmp/zellij-pipe-x", 600001),
])
def test_pipe_with_timeout_rejects_bad_input(isolated_dirs: Path, command, target, timeout_ms):
    svc = _service(isolated_dirs)
    with pytest.raises(InvalidInput):
        asyncio.run(svc.pipe_with_timeout(command, target, timeout_ms))
    assert len(svc.registry) == 0


def test_sweep_terminates_tracked_command(isolated_dirs: Path):
    svc = _service(isolated_dirs)
    fifo = svc.create_named_pipe("stuck")

    async def run_case():
        task = asyncio.create_task(svc.pipe_with_timeout("echo hi", str(fifo), 10000))
        await asyncio.sleep(0.3)
        entries = svc.registry.list_active(EntryKind.PROCESS)
        assert len(entries) == 1
        assert entries[0].target == f"pipe:{fifo}"
        assert entries[0].pid
        report = svc.cleanup()
        assert report.terminated_processes == 1
        assert len(svc.registry) == 0
        return await task

    result = asyncio.run(run_case())
    assert not result.timed_out
    assert result.exit_code == -15
    assert result.elapsed < 5.0
