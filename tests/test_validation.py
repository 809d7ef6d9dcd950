import pytest

from zellij_detect.errors import InvalidInput
from zellij_detect.validation import (
    validate_command,
    validate_mode,
    validate_path,
    validate_patterns,
    validate_pid,
    validate_pipe_name,
    validate_timeout_ms,
    validate_wrapper_name,
)


def test_path_rules():
    assert validate_path("/tmp/llm-status-job_1.txt") == "/tmp/llm-status-job_1.txt"
    for bad in ["", "/tmp/../etc/passwd", "/tmp/with space", "/tmp/$(x)", None]:
        with pytest.raises(InvalidInput):
            validate_path(bad)


def test_patterns_are_trimmed_and_bounded():
    assert validate_patterns(None) == ()
    assert validate_patterns([" DONE ", "error:"]) == ("DONE", "error:")
    with pytest.raises(InvalidInput):
        validate_patterns(["ok", "   "])
    with pytest.raises(InvalidInput):
        validate_patterns(["x" * 257])
    with pytest.raises(InvalidInput):
        validate_patterns("DONE")


def test_timeout_bounds():
    assert validate_timeout_ms(100, 100, 300000) == 100
    assert validate_timeout_ms(300000, 100, 300000) == 300000
    for bad in [99, 300001, "500", True, float("nan"), None]:
        with pytest.raises(InvalidInput):
            validate_timeout_ms(bad, 100, 300000)


def test_pid_rules():
    assert validate_pid(1) == 1
    assert validate_pid("4242") == 4242
    for bad in [0, -1, 4194305, "abc", None, True]:
        with pytest.raises(InvalidInput):
            validate_pid(bad)


def test_octal_mode():
    assert validate_mode("0666") == 0o666
    assert validate_mode("0600") == 0o600
    for bad in ["666", "0888", "00666", "rw-rw-rw-", 666]:
        with pytest.raises(InvalidInput):
            validate_mode(bad)


def test_names():
    assert validate_pipe_name("build.out") == "build.out"
    assert validate_wrapper_name("claude-query_1") == "claude-query_1"
    for bad in ["", "a/b", "..", "x" * 65]:
        with pytest.raises(InvalidInput):
            validate_pipe_name(bad)
    for bad in ["a b", "a.b", "x" * 33]:
        with pytest.raises(InvalidInput):
            validate_wrapper_name(bad)


def test_command_rejects_shell_metacharacters():
    assert validate_command("  llm prompt --model small ") == "llm prompt --model small"
    for bad in ["echo hi; rm x", "cat a | sh", "sudo ls", "rm -rf build", "ls ../", "echo $(id)", "x" * 1001]:
        with pytest.raises(InvalidInput):
            validate_command(bad)
