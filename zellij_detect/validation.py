from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple, Union

from .errors import InvalidInput


MAX_PID = 4_194_304

SAFE_PATH = re.compile(r"^[/\w\-.]+$")
SAFE_NAME = re.compile(r"^[\w\-.]+$")
WRAPPER_NAME = re.compile(r"^[A-Za-z0-9_-]+$")
OCTAL_MODE = re.compile(r"^0[0-7]{3}$")

DANGEROUS_COMMAND_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"[;&|`$(){}\[\]]"), "command separators and expansions"),
    (re.compile(r"\.\."), "directory traversal"),
    (re.compile(r"rm\s+-rf"), "recursive removal"),
    (re.compile(r"sudo"), "privilege escalation"),
    (re.compile(r"curl.*\|.*sh"), "pipe to shell"),
    (re.compile(r"wget.*\|.*sh"), "pipe to shell"),
)
MAX_COMMAND_LENGTH = 1000


def validate_string(value, field: str, max_length: int = 256) -> str:
    """Require a non-blank string no longer than ``max_length``; returns it trimmed."""
    if not isinstance(value, str) or not value:
        raise InvalidInput(f"{field} is required and must be a string", field)
    if len(value) > max_length:
        raise InvalidInput(f"{field} is too long (max {max_length} characters)", field)
    if not value.strip():
        raise InvalidInput(f"{field} cannot be empty", field)
    return value.strip()


def validate_path(path, field: str = "path") -> str:
    if not isinstance(path, str) or not path:
        raise InvalidInput(f"{field} is required", field)
    if ".." in path:
        raise InvalidInput(f"{field} cannot contain directory traversal (..)", field)
    if not SAFE_PATH.match(path):
        raise InvalidInput(f"{field} contains characters outside [/A-Za-z0-9_.-]", field)
    return path


def validate_patterns(patterns: Optional[Iterable[str]], max_length: int = 256) -> Tuple[str, ...]:
    if patterns is None:
        return ()
    if isinstance(patterns, str):
        raise InvalidInput("patterns must be a list of strings, not a single string", "patterns")
    return tuple(validate_string(p, "pattern", max_length) for p in patterns)


def validate_timeout_ms(timeout_ms, lo: int, hi: int, field: str = "timeout_ms") -> int:
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)):
        raise InvalidInput(f"{field} must be a number of milliseconds", field)
    # NaN fails both comparisons
    if not (lo <= timeout_ms <= hi):
        raise InvalidInput(f"{field} must be between {lo}ms and {hi}ms", field)
    return int(timeout_ms)


def validate_pid(pid: Union[int, str]) -> int:
    if isinstance(pid, bool):
        raise InvalidInput("Invalid PID: must be a positive integer", "pid")
    try:
        value = int(pid)
    except (TypeError, ValueError):
        raise InvalidInput("Invalid PID: must be a positive integer", "pid")
    if value <= 0 or value > MAX_PID:
        raise InvalidInput(f"Invalid PID: must be between 1 and {MAX_PID}", "pid")
    return value


def validate_mode(mode: str) -> int:
    """Check an octal permission string such as ``"0666"`` and return its integer value."""
    if not isinstance(mode, str) or not OCTAL_MODE.match(mode):
        raise InvalidInput('Mode must be in octal format (e.g., "0666")', "mode")
    return int(mode, 8)


def validate_pipe_name(name) -> str:
    value = validate_string(name, "pipe name", 64)
    if not SAFE_NAME.match(value) or value in (".", ".."):
        raise InvalidInput("pipe name may only contain letters, digits, '_', '-' and '.'", "pipe_name")
    return value


def validate_wrapper_name(name) -> str:
    value = validate_string(name, "wrapper name", 32)
    if not WRAPPER_NAME.match(value):
        raise InvalidInput("wrapper name may only contain letters, digits, '_' and '-'", "wrapper_name")
    return value


def validate_command(command) -> str:
    if not isinstance(command, str) or not command.strip():
        raise InvalidInput("Command is required and must be a string", "command")
    errors: List[str] = []
    for pattern, label in DANGEROUS_COMMAND_PATTERNS:
        if pattern.search(command):
            errors.append(f"potentially dangerous pattern ({label}): {pattern.pattern}")
    if len(command) > MAX_COMMAND_LENGTH:
        errors.append(f"too long (max {MAX_COMMAND_LENGTH} characters)")
    if errors:
        raise InvalidInput("Invalid command: " + ", ".join(errors), "command")
    return command.strip()
