from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .cleanup import CleanupCoordinator, SweepReport
from .config import DetectionConfig
from .errors import DetectionError
from .metrics import increment_usage
from .piping import PipeResult, PipeRunner, create_named_pipe
from .process import ProcessPoller, ProcessStatus
from .registry import ResourceRegistry
from .validation import validate_command, validate_timeout_ms
from .watcher import SourceKind, WatchOutcome, WatchRequest, Watcher
from .wrapper import WrapperArtifacts, WrapperGenerator, WrapperSpec


logger = logging.getLogger("zellij_detect.service")


class DetectionService:
    """Entry point for every detection operation.

    Owns one registry (injected or created here); every watch, piped command
    and sweep started through this service shares it.
    """

    def __init__(self, config: Optional[DetectionConfig] = None, registry: Optional[ResourceRegistry] = None,
                 record_usage: bool = True):
        self.config = config or DetectionConfig()
        self.registry = registry if registry is not None else ResourceRegistry()
        self.record_usage = record_usage
        self.poller = ProcessPoller(self.config)
        self.wrappers = WrapperGenerator(self.config)
        self.piper = PipeRunner(self.registry, self.config)
        self.coordinator = CleanupCoordinator(self.registry, self.config)

    def _count(self, name: str, outcome: str) -> None:
        if self.record_usage:
            increment_usage(name, outcome)

    async def _watch(self, name: str, kind: SourceKind, target: str,
                     patterns: Optional[Iterable[str]], timeout_ms: Optional[int]) -> WatchOutcome:
        if timeout_ms is None:
            timeout_ms = self.config.default_watch_timeout_ms
        if patterns is None:
            patterns = ()
        elif not isinstance(patterns, str):
            patterns = tuple(patterns)
        timeout = timeout_ms
        if isinstance(timeout_ms, (int, float)) and not isinstance(timeout_ms, bool):
            timeout = timeout_ms / 1000.0
        request = WatchRequest(target=target, kind=kind, patterns=patterns, timeout=timeout)
        outcome = await Watcher(request, self.registry, self.config).run()
        self._count(name, outcome.error.code if outcome.error else outcome.kind.value)
        return outcome

    async def watch_file(self, file_path: str, patterns: Optional[Iterable[str]] = None,
                         timeout_ms: Optional[int] = None) -> WatchOutcome:
        return await self._watch("watch_file", SourceKind.FILE, file_path, patterns, timeout_ms)

    async def watch_pipe(self, pipe_path: str, patterns: Optional[Iterable[str]] = None,
                         timeout_ms: Optional[int] = None) -> WatchOutcome:
        return await self._watch("watch_pipe", SourceKind.PIPE, pipe_path, patterns, timeout_ms)

    def create_named_pipe(self, pipe_name: str, mode: str = "0666") -> Path:
        try:
            path = create_named_pipe(pipe_name, mode, self.config)
        except DetectionError as e:
            self._count("create_named_pipe", e.code)
            raise
        self._count("create_named_pipe", "ok")
        return path

    async def pipe_with_timeout(self, command: str, target_pipe: str,
                                timeout_ms: Optional[int] = None) -> PipeResult:
        if timeout_ms is None:
            timeout_ms = self.config.default_pipe_timeout_ms
        try:
            result = await self.piper.run(command, target_pipe, timeout_ms)
        except DetectionError as e:
            self._count("pipe_with_timeout", e.code)
            raise
        self._count("pipe_with_timeout", "timed_out" if result.timed_out else "ok")
        return result

    def poll_process(self, pid: Union[int, str], interval_ms: int = 1000) -> ProcessStatus:
        try:
            status = self.poller.query(pid, interval_ms)
        except DetectionError as e:
            self._count("poll_process", e.code)
            raise
        self._count("poll_process", "alive" if status.found else "not_found")
        return status

    def create_llm_wrapper(self, wrapper_name: str, llm_command: str, detect_marker: Optional[str] = None,
                           timeout_ms: Optional[int] = None, emit_marker: bool = True) -> WrapperArtifacts:
        try:
            command = validate_command(llm_command)
            if timeout_ms is None:
                timeout_ms = self.config.default_wrapper_timeout_ms
            timeout_ms = validate_timeout_ms(timeout_ms, self.config.wrapper_timeout_min_ms,
                                             self.config.wrapper_timeout_max_ms)
            spec = WrapperSpec(
                name=wrapper_name,
                command=command,
                marker=detect_marker if detect_marker is not None else self.config.default_marker,
                timeout=timeout_ms / 1000.0,
                emit_marker=emit_marker,
            )
            artifacts = self.wrappers.generate(spec)
        except DetectionError as e:
            self._count("create_llm_wrapper", e.code)
            raise
        self._count("create_llm_wrapper", "ok")
        return artifacts

    def cleanup(self) -> SweepReport:
        report = self.coordinator.sweep()
        self._count("cleanup_detection", "ok")
        return report

    def active(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.registry.list_active()]
