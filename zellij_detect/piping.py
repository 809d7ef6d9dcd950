from __future__ import annotations

import asyncio
import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import DetectionConfig
from .errors import DetectionError, ProcessSpawnError
from .process import terminate_tree
from .registry import EntryKind, ResourceRegistry
from .validation import validate_command, validate_mode, validate_path, validate_pipe_name, validate_timeout_ms


logger = logging.getLogger("zellij_detect.piping")

PIPE_PREFIX = "zellij-pipe-"


def create_named_pipe(name: str, mode: str = "0666", config: Optional[DetectionConfig] = None) -> Path:
    """Create ``<tmp_dir>/zellij-pipe-<name>`` as a FIFO with exactly ``mode``."""
    config = config or DetectionConfig()
    name = validate_pipe_name(name)
    perm = validate_mode(mode)
    path = Path(config.tmp_dir) / f"{PIPE_PREFIX}{name}"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        os.mkfifo(path, perm)
        # mkfifo is subject to the umask
        os.chmod(path, perm)
    except FileExistsError:
        raise DetectionError(f"Failed to create named pipe: {path} already exists")
    except OSError as e:
        raise DetectionError(f"Failed to create named pipe: {e}")
    logger.info(f"Named pipe created: {path} with mode {mode}")
    return path


@dataclass(frozen=True)
class PipeResult:
    command: str
    target: str
    exit_code: Optional[int]
    timed_out: bool
    elapsed: float

    def describe(self) -> str:
        if self.timed_out:
            return f"Command piped with timeout completion after {self.elapsed:.3f}s: {self.command}"
        return f"Command completed with exit code {self.exit_code}: {self.command}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "command": self.command,
            "target": self.target,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "elapsed": round(self.elapsed, 3),
            "message": self.describe(),
        }


class PipeRunner:
    """Runs a shell command with stdout redirected into a target pipe.

    The child is tracked in the registry from spawn until it has exited (or
    been terminated), so a sweep can reclaim it while it is blocked on a pipe
    nobody reads.
    """

    def __init__(self, registry: ResourceRegistry, config: Optional[DetectionConfig] = None):
        self.registry = registry
        self.config = config or DetectionConfig()

    async def run(self, command: str, target_pipe: str, timeout_ms: int) -> PipeResult:
        command = validate_command(command)
        target = validate_path(target_pipe, "target_pipe")
        timeout_ms = validate_timeout_ms(timeout_ms, self.config.pipe_timeout_min_ms,
                                         self.config.pipe_timeout_max_ms)
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            proc = await asyncio.create_subprocess_exec(
                "bash", "-c", f"{command} > {shlex.quote(target)}",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise ProcessSpawnError(f"Failed to execute piped command: {e}")

        handle = self.registry.register(EntryKind.PROCESS, proc, f"pipe:{target}", pid=proc.pid)
        logger.info(f"Spawned {handle} pid={proc.pid}: {command} > {target}")
        timed_out = False
        try:
            try:
                await asyncio.wait_for(proc.wait(), timeout_ms / 1000.0)
            except asyncio.TimeoutError:
                timed_out = True
                await self._reap(proc)
        finally:
            if proc.returncode is None:
                terminate_tree(proc.pid)
            self.registry.unregister(handle)

        result = PipeResult(
            command=command,
            target=target,
            exit_code=None if timed_out else proc.returncode,
            timed_out=timed_out,
            elapsed=loop.time() - started,
        )
        logger.info(f"{handle}: {result.describe()}")
        return result

    async def _reap(self, proc: asyncio.subprocess.Process) -> None:
        terminate_tree(proc.pid)
        try:
            await asyncio.wait_for(proc.wait(), self.config.kill_grace_seconds)
        except asyncio.TimeoutError:
            terminate_tree(proc.pid, kill=True)
            await proc.wait()
