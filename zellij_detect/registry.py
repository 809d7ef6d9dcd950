from __future__ import annotations

import enum
import itertools
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


logger = logging.getLogger("zellij_detect.registry")


class EntryKind(str, enum.Enum):
    WATCH = "watch"
    PROCESS = "process"


@dataclass(frozen=True)
class RegistryEntry:
    handle: str
    kind: EntryKind
    created: float
    target: str
    resource: Any
    pid: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "handle": self.handle,
            "kind": self.kind.value,
            "created": self.created,
            "age": round(time.time() - self.created, 3),
            "target": self.target,
        }
        if self.pid is not None:
            out["pid"] = self.pid
        return out


class ResourceRegistry:
    """Table of live watches and spawned child processes.

    The registry is the only state shared between watches. All mutation goes
    through one lock so a sweep may run from another thread while watches on
    the event loop register and unregister themselves.
    """

    def __init__(self):
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._prefix = uuid.uuid4().hex[:8]

    def _new_handle(self, kind: EntryKind) -> str:
        return f"{kind.value}-{self._prefix}-{next(self._seq)}"

    def register(self, kind: EntryKind, resource: Any, target: str, pid: Optional[int] = None) -> str:
        with self._lock:
            handle = self._new_handle(kind)
            self._entries[handle] = RegistryEntry(
                handle=handle,
                kind=kind,
                created=time.time(),
                target=target,
                resource=resource,
                pid=pid,
            )
        logger.debug(f"Registered {handle} ({target})")
        return handle

    def unregister(self, handle: str) -> Optional[RegistryEntry]:
        with self._lock:
            entry = self._entries.pop(handle, None)
        if entry is not None:
            logger.debug(f"Unregistered {handle}")
        return entry

    def get(self, handle: str) -> Optional[RegistryEntry]:
        with self._lock:
            return self._entries.get(handle)

    def list_active(self, kind: Optional[EntryKind] = None) -> List[RegistryEntry]:
        with self._lock:
            entries = list(self._entries.values())
        if kind is not None:
            entries = [e for e in entries if e.kind == kind]
        return sorted(entries, key=lambda e: e.created)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, handle: str) -> bool:
        with self._lock:
            return handle in self._entries
