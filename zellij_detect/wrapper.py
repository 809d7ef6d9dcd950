from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import DEFAULT_MARKER, DetectionConfig
from .errors import DetectionError, InvalidInput
from .templating import render
from .validation import validate_string, validate_timeout_ms, validate_wrapper_name


logger = logging.getLogger("zellij_detect.wrapper")

WRAPPER_PREFIX = "llm-wrapper-"
STATUS_PREFIX = "llm-status-"
OUTPUT_PREFIX = "llm-output-"

# Conventional exit status of coreutils timeout(1)
TIMEOUT_EXIT_CODE = 124

STATUS_RE = re.compile(r"^(running|timeout|complete:(-?\d+)|error:(-?\d+))$")


WRAPPER_TEMPLATE = r"""#!/usr/bin/env bash
# Completion-reporting wrapper: {{name}}
# Generated by zellij-detect.
# Status file (first line is canonical): running | complete:N | error:N | timeout

set -uo pipefail

WRAPPER_NAME={{q_name}}
STATUS_FILE={{q_status_path}}
OUTPUT_FILE={{q_output_prefix}}"$$"
MARKER_TOKEN={{q_marker_token}}
EMIT_MARKER={{emit_marker}}
TIMEOUT_SECS={{timeout_secs}}
KILL_GRACE={{kill_grace}}
CHILD_PID=""
TEE_PID=""
FINISHED=0

write_status() {
    local tmp="$STATUS_FILE.tmp.$$"
    {
        printf '%s\n' "$1"
        printf '%s: %s\n' "$(date -Iseconds)" "$2"
    } > "$tmp" && mv -f "$tmp" "$STATUS_FILE"
}

finish() {
    # One terminal value per run
    if [[ $FINISHED -eq 0 ]]; then
        FINISHED=1
        write_status "$1" "$2"
    fi
}

stop_child() {
    if [[ -n "$CHILD_PID" ]] && kill -0 "$CHILD_PID" 2>/dev/null; then
        kill -TERM "$CHILD_PID" 2>/dev/null || true
        wait "$CHILD_PID" 2>/dev/null || true
    fi
    CHILD_PID=""
}

drain_output() {
    # tee exits once the command side of its pipe is closed
    if [[ -n "$TEE_PID" ]]; then
        wait "$TEE_PID" 2>/dev/null || while kill -0 "$TEE_PID" 2>/dev/null; do sleep 0.05; done
        TEE_PID=""
    fi
}

cleanup() {
    stop_child
    rm -f "$OUTPUT_FILE" "$STATUS_FILE.tmp.$$"
}

on_signal() {
    local code=$1
    stop_child
    finish "error:$code" "$WRAPPER_NAME interrupted (exit $code)"
    exit "$code"
}

trap cleanup EXIT
trap 'on_signal 129' HUP
trap 'on_signal 130' INT
trap 'on_signal 143' TERM

write_status "running" "Starting $WRAPPER_NAME"

# Output streams live through tee and is kept in OUTPUT_FILE
exec 3> >(tee "$OUTPUT_FILE")
TEE_PID=$!
timeout --signal=TERM --kill-after="$KILL_GRACE" "$TIMEOUT_SECS" {{command}} "$@" >&3 3>&- &
CHILD_PID=$!
exec 3>&-
wait "$CHILD_PID"
EXIT_CODE=$?
CHILD_PID=""
drain_output

if [[ $EXIT_CODE -eq 124 ]] || { [[ $EXIT_CODE -eq 137 ]] && [[ $SECONDS -ge ${TIMEOUT_SECS%.*} ]]; }; then
    finish "timeout" "$WRAPPER_NAME timed out after ${TIMEOUT_SECS}s"
    exit 124
fi

if [[ $EXIT_CODE -eq 0 ]]; then
    finish "complete:0" "$WRAPPER_NAME completed successfully"
else
    finish "error:$EXIT_CODE" "$WRAPPER_NAME failed with code $EXIT_CODE"
fi
if [[ "$EMIT_MARKER" == "1" ]]; then
    printf '<<<%s:%s>>>\n' "$MARKER_TOKEN" "$EXIT_CODE"
fi
exit "$EXIT_CODE"
"""


@dataclass(frozen=True)
class WrapperSpec:
    name: str
    command: str
    marker: str = DEFAULT_MARKER
    timeout: float = 60.0  # seconds
    emit_marker: bool = True


@dataclass(frozen=True)
class WrapperArtifacts:
    script_path: Path
    status_path: Path
    output_prefix: Path
    marker: str
    timeout: float

    def describe(self) -> str:
        return (
            f"LLM wrapper created: {self.script_path}\n"
            f"Status file: {self.status_path}\n"
            f"Detection marker: {self.marker}\n"
            f"Timeout: {int(self.timeout * 1000)}ms\n\n"
            f"Usage: {self.script_path} [args...]"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "script_path": str(self.script_path),
            "status_path": str(self.status_path),
            "output_prefix": str(self.output_prefix),
            "marker": self.marker,
            "timeout_ms": int(self.timeout * 1000),
            "message": self.describe(),
        }


@dataclass(frozen=True)
class StatusValue:
    state: str  # running | complete | error | timeout
    exit_code: Optional[int] = None

    @property
    def terminal(self) -> bool:
        return self.state != "running"

    def __str__(self) -> str:
        if self.exit_code is None:
            return self.state
        return f"{self.state}:{self.exit_code}"


def parse_status(text: str) -> StatusValue:
    """Read the canonical first line of a status artifact."""
    lines = (text or "").strip().splitlines()
    first = lines[0].strip() if lines else ""
    m = STATUS_RE.match(first)
    if not m:
        raise InvalidInput(f"Not a status value: {first!r}", "status")
    if m.group(2) is not None:
        return StatusValue("complete", int(m.group(2)))
    if m.group(3) is not None:
        return StatusValue("error", int(m.group(3)))
    return StatusValue(m.group(1))


def marker_token(marker: str) -> str:
    token = marker.strip()
    if token.startswith("<<<") and token.endswith(">>>") and len(token) > 6:
        token = token[3:-3]
    return token


def marker_line(marker: str, exit_code: Optional[int] = None) -> str:
    token = marker_token(marker)
    if exit_code is None:
        return f"<<<{token}>>>"
    return f"<<<{token}:{exit_code}>>>"


def find_marker(text: str, marker: str) -> Optional[int]:
    """Exit code carried by the last marker line in ``text``.

    ``None`` when no marker is present; the bare ``<<<TOKEN>>>`` form counts as 0.
    """
    token = re.escape(marker_token(marker))
    found = None
    for m in re.finditer(r"<<<" + token + r"(?::(-?\d+))?>>>", text or ""):
        found = int(m.group(1)) if m.group(1) is not None else 0
    return found


class WrapperGenerator:
    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def paths_for(self, name: str):
        tmp = Path(self.config.tmp_dir)
        return (
            tmp / f"{WRAPPER_PREFIX}{name}.sh",
            tmp / f"{STATUS_PREFIX}{name}",
            tmp / f"{OUTPUT_PREFIX}{name}-",
        )

    def render(self, spec: WrapperSpec) -> str:
        _, status_path, output_prefix = self.paths_for(spec.name)
        timeout_secs = f"{spec.timeout:g}"
        return render(WRAPPER_TEMPLATE, {
            "name": spec.name,
            "q_name": shlex.quote(spec.name),
            "q_status_path": shlex.quote(str(status_path)),
            "q_output_prefix": shlex.quote(str(output_prefix)),
            "q_marker_token": shlex.quote(marker_token(spec.marker)),
            "emit_marker": "1" if spec.emit_marker else "0",
            "timeout_secs": timeout_secs,
            "kill_grace": f"{self.config.kill_grace_seconds:g}",
            "command": spec.command,
        })

    def generate(self, spec: WrapperSpec) -> WrapperArtifacts:
        """Write the wrapper script for ``spec`` and return where its artifacts live.

        The command is taken as-is; callers validate it before it gets here.
        """
        name = validate_wrapper_name(spec.name)
        marker = validate_string(spec.marker, "detection marker", 64)
        if not marker_token(marker):
            raise InvalidInput("detection marker cannot be empty", "detect_marker")
        if isinstance(spec.timeout, bool) or not isinstance(spec.timeout, (int, float)):
            raise InvalidInput("timeout must be a number of seconds", "timeout")
        validate_timeout_ms(spec.timeout * 1000.0, self.config.wrapper_timeout_min_ms,
                            self.config.wrapper_timeout_max_ms)
        if not isinstance(spec.command, str) or not spec.command.strip():
            raise InvalidInput("Command is required and must be a string", "command")
        spec = WrapperSpec(name=name, command=spec.command.strip(), marker=marker,
                           timeout=float(spec.timeout), emit_marker=spec.emit_marker)

        script_path, status_path, output_prefix = self.paths_for(name)
        script = self.render(spec)
        try:
            script_path.parent.mkdir(parents=True, exist_ok=True)
            script_path.write_text(script, encoding="utf-8")
            os.chmod(script_path, 0o755)
        except OSError as e:
            raise DetectionError(f"Failed to create wrapper script: {e}")
        logger.info(f"Wrote wrapper {script_path} (status {status_path}, timeout {spec.timeout:g}s)")
        return WrapperArtifacts(
            script_path=script_path,
            status_path=status_path,
            output_prefix=output_prefix,
            marker=marker,
            timeout=spec.timeout,
        )
