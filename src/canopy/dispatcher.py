"""Canopy: the registry that fans each log call out to planted sinks.

Locking discipline:
    - plant/uproot mutate the sink list under one lock.
    - A log call copies the list under the lock, releases it, then runs
      every sink on the calling thread in planting order. Sinks may
      block, log recursively or schedule work without holding the lock.

Tag precedence for one call, first non-empty wins:
    sink one-shot tag (sink.tag("X")) > per-call tag (tag= / canopy.tag("X"))
    > ambient context (canopy.context.scope) > tag a sink derives itself
"""

from __future__ import annotations

import threading
from typing import Any, Sequence

from canopy.config import BuildMode
from canopy.entry import LazyMessage, Message, SourceLocation
from canopy.levels import LogLevel
from canopy.logging import get_logger
from canopy.sinks.base import Sink

logger = get_logger("canopy.dispatcher")


class TaggedProxy:
    """Level methods with a tag pre-bound. Cheap, stateless, disposable."""

    __slots__ = ("_canopy", "_tag")

    def __init__(self, canopy: Canopy, tag: str | None) -> None:
        self._canopy = canopy
        self._tag = tag or None

    @property
    def tag(self) -> str | None:
        return self._tag

    def v(self, message: Message, *args: Any, error: BaseException | None = None) -> None:
        self._canopy._log(LogLevel.VERBOSE, message, args, self._tag, error, 2)

    def d(self, message: Message, *args: Any, error: BaseException | None = None) -> None:
        self._canopy._log(LogLevel.DEBUG, message, args, self._tag, error, 2)

    def i(self, message: Message, *args: Any, error: BaseException | None = None) -> None:
        self._canopy._log(LogLevel.INFO, message, args, self._tag, error, 2)

    def w(self, message: Message, *args: Any, error: BaseException | None = None) -> None:
        self._canopy._log(LogLevel.WARNING, message, args, self._tag, error, 2)

    def e(self, message: Message, *args: Any, error: BaseException | None = None) -> None:
        self._canopy._log(LogLevel.ERROR, message, args, self._tag, error, 2)


class Canopy:
    """Thread-safe sink registry and log-call dispatcher."""

    def __init__(self, build_mode: BuildMode | str = BuildMode.DEBUG) -> None:
        self._lock = threading.Lock()
        self._sinks: list[Sink] = []
        self._has_non_debug_sinks = False
        self._needs_recalc = True
        self.build_mode = BuildMode(build_mode)

    # -- registry --------------------------------------------------------

    def plant(self, *sinks: Sink) -> None:
        """Append sinks. Planting the same sink twice delivers every entry twice."""
        for sink in sinks:
            if not isinstance(sink, Sink):
                raise TypeError(f"Can only plant Sink instances, got {type(sink).__name__}")
        with self._lock:
            self._sinks.extend(sinks)
            self._needs_recalc = True

    def uproot(self, sink: Sink) -> bool:
        """Remove every occurrence of *sink*. Returns True if any was planted."""
        with self._lock:
            before = len(self._sinks)
            self._sinks = [s for s in self._sinks if s is not sink]
            self._needs_recalc = True
            return len(self._sinks) != before

    def uproot_all(self) -> None:
        with self._lock:
            self._sinks.clear()
            self._needs_recalc = True

    def forest(self) -> list[Sink]:
        """Snapshot of planted sinks, in planting order."""
        with self._lock:
            return list(self._sinks)

    @property
    def tree_count(self) -> int:
        with self._lock:
            return len(self._sinks)

    def has_non_debug_sinks(self) -> bool:
        with self._lock:
            if self._needs_recalc:
                self._has_non_debug_sinks = any(not s.debug_only for s in self._sinks)
                self._needs_recalc = False
            return self._has_non_debug_sinks

    # -- logging ---------------------------------------------------------

    def tag(self, tag: str | None) -> TaggedProxy:
        return TaggedProxy(self, tag)

    def v(self, message: Message, *args: Any, tag: str | None = None,
          error: BaseException | None = None) -> None:
        self._log(LogLevel.VERBOSE, message, args, tag, error, 2)

    def d(self, message: Message, *args: Any, tag: str | None = None,
          error: BaseException | None = None) -> None:
        self._log(LogLevel.DEBUG, message, args, tag, error, 2)

    def i(self, message: Message, *args: Any, tag: str | None = None,
          error: BaseException | None = None) -> None:
        self._log(LogLevel.INFO, message, args, tag, error, 2)

    def w(self, message: Message, *args: Any, tag: str | None = None,
          error: BaseException | None = None) -> None:
        self._log(LogLevel.WARNING, message, args, tag, error, 2)

    def e(self, message: Message, *args: Any, tag: str | None = None,
          error: BaseException | None = None) -> None:
        self._log(LogLevel.ERROR, message, args, tag, error, 2)

    def log(self, level: LogLevel, message: Message, *args: Any, tag: str | None = None,
            error: BaseException | None = None) -> None:
        """Level chosen at runtime, e.g. from a config value."""
        self._log(LogLevel.parse(level), message, args, tag, error, 2)

    def _log(
        self,
        level: LogLevel,
        message: Message,
        args: Sequence[Any],
        tag: str | None,
        error: BaseException | None,
        depth: int,
    ) -> None:
        """Fan one call out. *depth* is the number of frames up to the caller."""
        if self.build_mode is BuildMode.RELEASE and not self.has_non_debug_sinks():
            return

        with self._lock:
            sinks = list(self._sinks)
        if not sinks:
            return

        location = SourceLocation.capture(depth)
        if callable(message):
            message = LazyMessage(message)

        for sink in sinks:
            if not sink.is_loggable(level):
                continue
            try:
                sink.log(level, message, args, tag=tag or None, error=error, location=location)
            except Exception:
                logger.exception(
                    "dispatch.sink_failed",
                    sink=type(sink).__name__,
                    level=str(level),
                )

    def __repr__(self) -> str:
        return f"Canopy(build_mode={self.build_mode.value!r}, trees={self.tree_count})"


