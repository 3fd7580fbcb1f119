"""AsyncSink: run another sink's work on a background thread.

The caller thread only captures what it needs (ambient context, one-shot
tag, formatted message) and enqueues. A single worker per AsyncSink runs
the wrapped sink, so entries arrive in submission order.

The queue is unbounded: a wrapped sink slower than the log rate grows
memory without limit and no backpressure reaches the caller.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Sequence

from canopy import context
from canopy.entry import Message, SourceLocation, materialize
from canopy.formatting import format_message
from canopy.levels import LogLevel
from canopy.logging import get_logger
from canopy.sinks.base import Sink

logger = get_logger("canopy.sinks.async")


class AsyncSink(Sink):
    """Decorator that makes a sink fire-and-forget for the caller."""

    def __init__(self, wrapped: Sink, *, thread_name: str = "canopy-async") -> None:
        super().__init__(wrapped.min_level)
        self._wrapped = wrapped
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name)
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def wrapped(self) -> Sink:
        return self._wrapped

    @property
    def min_level(self) -> LogLevel:  # type: ignore[override]
        return self._wrapped.min_level

    @min_level.setter
    def min_level(self, value: LogLevel) -> None:
        # Base __init__ assigns before _wrapped exists
        if hasattr(self, "_wrapped"):
            self._wrapped.min_level = LogLevel.parse(value)

    @property
    def debug_only(self) -> bool:  # type: ignore[override]
        return self._wrapped.debug_only

    def is_loggable(self, level: LogLevel) -> bool:
        return self._wrapped.is_loggable(level)

    def log(
        self,
        level: LogLevel,
        message: Message,
        args: Sequence[Any] = (),
        *,
        tag: str | None = None,
        error: BaseException | None = None,
        location: SourceLocation | None = None,
    ) -> None:
        captured_context = context.get_current()
        captured_tag = self.take_explicit_tag() or tag
        captured_message = format_message(materialize(message), args)

        try:
            self._executor.submit(
                self._deliver,
                level,
                captured_message,
                captured_tag,
                captured_context,
                error,
                location,
            )
        except RuntimeError:
            # Executor shut down: close() already ran
            logger.debug("async_sink.dropped_after_close", level=str(level))

    def _deliver(
        self,
        level: LogLevel,
        message: str,
        tag: str | None,
        captured_context: str | None,
        error: BaseException | None,
        location: SourceLocation | None,
    ) -> None:
        token = context.set_current(captured_context)
        try:
            self._wrapped.log(level, message, (), tag=tag, error=error, location=location)
        except Exception:
            logger.exception(
                "async_sink.delivery_failed",
                sink=type(self._wrapped).__name__,
            )
        finally:
            context.reset_current(token)

    def flush(self, timeout: float | None = None) -> bool:
        """Block until everything submitted so far has been delivered.

        Returns False if *timeout* expired first or the sink is closed.
        """
        try:
            marker = self._executor.submit(lambda: None)
        except RuntimeError:
            return False
        done = threading.Event()
        marker.add_done_callback(lambda _: done.set())
        return done.wait(timeout)

    def close(self) -> None:
        """Deliver pending entries, stop the worker, close the wrapped sink."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
        self._wrapped.close()

    def __repr__(self) -> str:
        return f"AsyncSink({self._wrapped!r})"
