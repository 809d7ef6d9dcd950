from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from .config import DetectionConfig
from .errors import Cancelled, DetectionError, InvalidInput, SourceReadError
from .registry import EntryKind, ResourceRegistry
from .sources import FileSource, PipeSource
from .validation import validate_path, validate_patterns, validate_timeout_ms


logger = logging.getLogger("zellij_detect.watch")


class SourceKind(str, enum.Enum):
    FILE = "file"
    PIPE = "pipe"


class OutcomeKind(str, enum.Enum):
    MATCHED = "matched"
    END_OF_STREAM = "end_of_stream"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class WatchState(str, enum.Enum):
    IDLE = "idle"
    WATCHING = "watching"
    MATCHED = "matched"
    AT_EOF = "at_eof"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"


_TERMINAL_STATE = {
    OutcomeKind.MATCHED: WatchState.MATCHED,
    OutcomeKind.END_OF_STREAM: WatchState.AT_EOF,
    OutcomeKind.TIMED_OUT: WatchState.TIMED_OUT,
    OutcomeKind.FAILED: WatchState.ERRORED,
}


@dataclass(frozen=True)
class WatchRequest:
    target: str
    kind: SourceKind
    patterns: Tuple[str, ...] = ()
    timeout: float = 30.0  # seconds

    def validated(self, config: DetectionConfig) -> "WatchRequest":
        """Return a normalized copy (trimmed patterns) or raise InvalidInput."""
        try:
            kind = SourceKind(self.kind)
        except ValueError:
            raise InvalidInput(f"Unknown watch kind: {self.kind!r}", "kind")
        field = "file_path" if kind == SourceKind.FILE else "pipe_path"
        target = validate_path(self.target, field)
        patterns = validate_patterns(self.patterns, config.max_pattern_length)
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)):
            raise InvalidInput("timeout must be a number of seconds", "timeout")
        validate_timeout_ms(self.timeout * 1000.0, config.watch_timeout_min_ms, config.watch_timeout_max_ms)
        return replace(self, target=target, patterns=patterns, kind=kind)


@dataclass(frozen=True)
class WatchOutcome:
    kind: OutcomeKind
    target: str
    pattern: Optional[str] = None
    error: Optional[DetectionError] = None
    elapsed: float = 0.0
    handle: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind in (OutcomeKind.MATCHED, OutcomeKind.END_OF_STREAM)

    @property
    def timed_out(self) -> bool:
        return self.kind == OutcomeKind.TIMED_OUT

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, Cancelled)

    def describe(self) -> str:
        if self.kind == OutcomeKind.MATCHED:
            if self.pattern is None:
                return f"Activity detected on {self.target}"
            return f'Pattern "{self.pattern}" found in {self.target}'
        if self.kind == OutcomeKind.END_OF_STREAM:
            return f"EOF reached on {self.target}. No patterns matched."
        if self.kind == OutcomeKind.TIMED_OUT:
            return f"Watch timed out after {self.elapsed:.3f}s: {self.target}"
        return f"Watch failed ({self.error.code if self.error else 'error'}): {self.error}"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ok": self.ok,
            "outcome": self.kind.value,
            "target": self.target,
            "elapsed": round(self.elapsed, 3),
            "message": self.describe(),
        }
        if self.pattern is not None:
            out["pattern"] = self.pattern
        if self.error is not None:
            out.update(self.error.to_dict())
        if self.handle:
            out["handle"] = self.handle
        return out


class Watcher:
    """Drives one pattern source against a list of patterns until a deadline.

    Every arm (pattern match, end of stream, deadline, cancellation, read
    failure) goes through ``_finish``, which fills the result future at most
    once. The loser arms find ``_finished`` set and do nothing. Teardown
    (timer, reader task, source, registry entry) happens before the result is
    set, so a caller that sees the outcome never sees a live registry entry.
    """

    def __init__(self, request: WatchRequest, registry: ResourceRegistry, config: Optional[DetectionConfig] = None):
        self.request = request
        self.registry = registry
        self.config = config or DetectionConfig()
        self.state = WatchState.IDLE
        self.handle: Optional[str] = None
        self._target = request.target if isinstance(request.target, str) else str(request.target)
        self._needles: List[Tuple[str, bytes]] = []
        self._buffer = b""
        self._source = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._result: Optional[asyncio.Future] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._reader: Optional[asyncio.Task] = None
        self._started = 0.0
        self._finished = False

    def _make_source(self, req: WatchRequest):
        if req.kind == SourceKind.FILE:
            return FileSource(req.target, poll_interval=self.config.file_poll_interval)
        return PipeSource(req.target)

    def _outcome(self, kind: OutcomeKind, pattern: Optional[str] = None,
                 error: Optional[DetectionError] = None) -> WatchOutcome:
        elapsed = (self._loop.time() - self._started) if self._loop else 0.0
        return WatchOutcome(kind=kind, target=self._target, pattern=pattern, error=error,
                            elapsed=elapsed, handle=self.handle)

    async def run(self) -> WatchOutcome:
        if self._loop is not None:
            raise RuntimeError("Watcher.run() may only be awaited once")
        self._loop = asyncio.get_running_loop()
        self._started = self._loop.time()
        self._result = self._loop.create_future()

        try:
            req = self.request.validated(self.config)
        except InvalidInput as e:
            return self._fail_early(e)

        source = self._make_source(req)
        try:
            await source.open()
        except DetectionError as e:
            source.close()
            return self._fail_early(e)
        except asyncio.CancelledError:
            source.close()
            raise

        self._source = source
        self._needles = [(p, p.encode("utf-8")) for p in req.patterns]
        self.handle = self.registry.register(EntryKind.WATCH, self, f"{req.kind.value}:{req.target}")
        self.state = WatchState.WATCHING
        self._timer = self._loop.call_at(self._started + req.timeout, self._on_deadline)
        self._reader = self._loop.create_task(self._pump())
        logger.info(f"Watch {self.handle} started on {req.kind.value} {req.target} "
                    f"patterns={list(req.patterns)} timeout={req.timeout}s")
        try:
            return await self._result
        finally:
            if not self._finished:
                self._finish(self._outcome(OutcomeKind.FAILED, error=Cancelled("watch task was cancelled")))

    def _fail_early(self, error: DetectionError) -> WatchOutcome:
        self._finished = True
        self.state = WatchState.ERRORED
        outcome = self._outcome(OutcomeKind.FAILED, error=error)
        logger.info(f"Watch on {self._target} rejected: {error.code}: {error}")
        return outcome

    async def _pump(self) -> None:
        try:
            while not self._finished:
                chunk = await self._source.read()
                if self._finished:
                    return
                if self._source.replaces:
                    self._buffer = chunk
                elif not chunk:
                    self._finish(self._outcome(OutcomeKind.END_OF_STREAM))
                    return
                else:
                    self._buffer = (self._buffer + chunk)[-self.config.max_buffer_bytes:]
                if not self._needles:
                    self._finish(self._outcome(OutcomeKind.MATCHED))
                    return
                for pattern, needle in self._needles:
                    if needle in self._buffer:
                        self._finish(self._outcome(OutcomeKind.MATCHED, pattern=pattern))
                        return
        except asyncio.CancelledError:
            raise
        except DetectionError as e:
            self._finish(self._outcome(OutcomeKind.FAILED, error=e))
        except OSError as e:
            self._finish(self._outcome(OutcomeKind.FAILED, error=SourceReadError(str(e))))
        except Exception as e:
            logger.exception(f"Unexpected error in watch {self.handle}")
            self._finish(self._outcome(OutcomeKind.FAILED, error=DetectionError(f"unexpected error: {e}")))

    def _on_deadline(self) -> None:
        self._timer = None
        self._finish(self._outcome(OutcomeKind.TIMED_OUT))

    def _finish(self, outcome: WatchOutcome) -> bool:
        if self._finished:
            return False
        self._finished = True
        self.state = _TERMINAL_STATE[outcome.kind]
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        reader = self._reader
        self._reader = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        if self._source is not None:
            self._source.close()
        if self.handle is not None:
            self.registry.unregister(self.handle)
        if self._result is not None and not self._result.done():
            self._result.set_result(outcome)
        logger.info(f"Watch {self.handle} resolved: {outcome.describe()}")
        return True

    def cancel(self, reason: str = "watch cancelled") -> bool:
        """Resolve the watch as ``FAILED{Cancelled}``.

        Safe from the watch's own loop (resolves synchronously) or from any
        other thread (resolution is scheduled on the watch's loop).
        """
        loop = self._loop
        if loop is None or self._finished or loop.is_closed():
            return False

        def _do_cancel():
            self._finish(self._outcome(OutcomeKind.FAILED, error=Cancelled(reason)))

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            _do_cancel()
        else:
            loop.call_soon_threadsafe(_do_cancel)
        return True


async def watch(request: WatchRequest, registry: ResourceRegistry,
                config: Optional[DetectionConfig] = None) -> WatchOutcome:
    return await Watcher(request, registry, config).run()
