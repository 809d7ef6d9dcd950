from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import psutil

from .config import DetectionConfig
from .validation import validate_pid, validate_timeout_ms


logger = logging.getLogger("zellij_detect.process")


@dataclass(frozen=True)
class ProcessStatus:
    pid: int
    found: bool
    ppid: Optional[int] = None
    state: Optional[str] = None
    command: Optional[str] = None
    interval_ms: Optional[int] = None

    @classmethod
    def not_found(cls, pid: int, interval_ms: Optional[int] = None) -> "ProcessStatus":
        return cls(pid=pid, found=False, interval_ms=interval_ms)

    def describe(self) -> str:
        if not self.found:
            return f"Process {self.pid} not found or has exited"
        return (f"Process {self.pid} status:\nPID: {self.pid}\nPPID: {self.ppid}\n"
                f"State: {self.state}\nCommand: {self.command}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "pid": self.pid,
            "found": self.found,
            "ppid": self.ppid,
            "state": self.state,
            "command": self.command,
            "interval_ms": self.interval_ms,
            "message": self.describe(),
        }


class ProcessPoller:
    """One-shot liveness probe. Never loops; ``interval_ms`` is a hint echoed
    back for the caller's own retry loop."""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def query(self, pid: Union[int, str], interval_ms: int = 1000) -> ProcessStatus:
        pid_num = validate_pid(pid)
        interval = validate_timeout_ms(interval_ms, self.config.poll_interval_min_ms,
                                       self.config.poll_interval_max_ms, "interval_ms")
        try:
            proc = psutil.Process(pid_num)
        except psutil.NoSuchProcess:
            return ProcessStatus.not_found(pid_num, interval)
        except psutil.Error as e:
            logger.debug(f"psutil could not inspect {pid_num}: {e}")
            return ProcessStatus.not_found(pid_num, interval)

        ppid = state = command = None
        try:
            with proc.oneshot():
                state = proc.status()
                ppid = self._best_effort(proc.ppid)
                command = self._best_effort(proc.name)
        except psutil.ZombieProcess:
            state = psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return ProcessStatus.not_found(pid_num, interval)
        except psutil.AccessDenied:
            logger.debug(f"Access denied reading status of {pid_num}")
        return ProcessStatus(pid=pid_num, found=True, ppid=ppid, state=state,
                             command=command, interval_ms=interval)

    @staticmethod
    def _best_effort(fn):
        try:
            return fn()
        except psutil.AccessDenied:
            return None


def terminate_tree(pid: int, kill: bool = False) -> bool:
    """Send TERM (or KILL) to ``pid`` and all of its descendants.

    Returns False when the process is already gone. Does not wait.
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return False
    try:
        children = parent.children(recursive=True)
    except psutil.Error:
        children = []
    for proc in children + [parent]:
        try:
            if kill:
                proc.kill()
            else:
                proc.terminate()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as e:
            logger.warning(f"Cannot signal process {proc.pid}: {e}")
    return True
