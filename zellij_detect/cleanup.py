from __future__ import annotations

import logging
import stat
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import DetectionConfig
from .piping import PIPE_PREFIX
from .process import terminate_tree
from .registry import EntryKind, ResourceRegistry
from .wrapper import OUTPUT_PREFIX, STATUS_PREFIX, WRAPPER_PREFIX


logger = logging.getLogger("zellij_detect.cleanup")

ARTIFACT_PREFIXES = (WRAPPER_PREFIX, STATUS_PREFIX, OUTPUT_PREFIX, PIPE_PREFIX)


@dataclass
class SweepReport:
    cancelled_watches: int = 0
    terminated_processes: int = 0
    removed_files: List[str] = field(default_factory=list)

    @property
    def cancelled(self) -> int:
        return self.cancelled_watches + self.terminated_processes

    def describe(self) -> str:
        return (f"Detection cleanup completed. Stopped {self.cancelled} watchers/processes "
                f"and removed {len(self.removed_files)} temporary files.")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "cancelled": self.cancelled,
            "cancelled_watches": self.cancelled_watches,
            "terminated_processes": self.terminated_processes,
            "removed_files": list(self.removed_files),
            "message": self.describe(),
        }


class CleanupCoordinator:
    def __init__(self, registry: ResourceRegistry, config: Optional[DetectionConfig] = None):
        self.registry = registry
        self.config = config or DetectionConfig()

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        """Cancel every live watch, terminate every tracked child, and delete
        aged temporary artifacts.

        Works on a snapshot of the registry; entries that resolve on their own
        while the sweep runs are skipped by the watches' own exactly-once guard.

        On the watches' loop thread ``cancelled_watches`` is exact. From any
        other thread the cancellation is only scheduled, so the count is an
        upper bound: a watch that resolves before the scheduled callback runs
        keeps its own outcome but is still counted.
        """
        report = SweepReport()
        for entry in self.registry.list_active():
            if entry.kind == EntryKind.WATCH:
                if entry.resource.cancel("cancelled by registry sweep"):
                    report.cancelled_watches += 1
            elif entry.kind == EntryKind.PROCESS:
                if self.registry.unregister(entry.handle) is None:
                    continue
                if entry.pid is not None and terminate_tree(entry.pid):
                    report.terminated_processes += 1
        report.removed_files = self.remove_aged_artifacts(now)
        logger.info(report.describe())
        return report

    def remove_aged_artifacts(self, now: Optional[float] = None) -> List[str]:
        tmp = Path(self.config.tmp_dir)
        if not tmp.is_dir():
            return []
        cutoff = (now if now is not None else time.time()) - self.config.retention_seconds
        removed: List[str] = []
        for p in sorted(tmp.iterdir()):
            if not p.name.startswith(ARTIFACT_PREFIXES):
                continue
            try:
                st = p.lstat()
                if stat.S_ISDIR(st.st_mode) or st.st_mtime >= cutoff:
                    continue
                p.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove {p}: {e}")
                continue
            removed.append(str(p))
        return removed
