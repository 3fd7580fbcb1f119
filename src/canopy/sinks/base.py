"""Sink: the pluggable consumer every planted tree implements.

Subclasses usually override receive() only. Overriding log() instead lets
a sink see the raw template and arguments before formatting (AsyncSink
does this to format on the caller thread and deliver on a worker).
"""

from __future__ import annotations

import threading
from typing import Any, Sequence

from canopy import context
from canopy.entry import LogEntry, Message, SourceLocation, materialize
from canopy.formatting import format_message
from canopy.levels import LogLevel


class Sink:
    """Base class for all sinks.

    ``min_level`` is a plain attribute: set it at construction or before
    planting. The one-shot tag set by tag() is kept per thread, so a
    ``sink.tag("X").log(...)`` chain on one thread never leaks into a
    call made on another.
    """

    # Console-only sinks set this; release builds skip dispatch when
    # every planted sink is debug-only.
    debug_only: bool = False

    def __init__(self, min_level: LogLevel = LogLevel.VERBOSE) -> None:
        self.min_level = LogLevel.parse(min_level)
        self._one_shot = threading.local()

    # -- capability contract -------------------------------------------

    def is_loggable(self, level: LogLevel) -> bool:
        return level >= self.min_level

    def tag(self, tag: str | None) -> Sink:
        """Set a tag for the next log call on this thread. Empty means none."""
        self._one_shot.tag = tag or None
        return self

    @property
    def explicit_tag(self) -> str | None:
        return getattr(self._one_shot, "tag", None)

    def take_explicit_tag(self) -> str | None:
        """Return the pending one-shot tag and clear it."""
        tag = getattr(self._one_shot, "tag", None)
        self._one_shot.tag = None
        return tag

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
        """Resolve the tag, format the message and hand it to receive()."""
        effective_tag = self.take_explicit_tag() or tag or context.get_current()
        text = format_message(materialize(message), args)
        self.receive(
            LogEntry(
                level=level,
                tag=effective_tag,
                message=text,
                error=error,
                location=location or SourceLocation(),
            )
        )

    def receive(self, entry: LogEntry) -> None:
        """Consume one formatted entry. No-op by default."""

    # -- lifecycle -----------------------------------------------------

    def close(self) -> None:
        """Release any resources held by the sink."""

    def __enter__(self) -> Sink:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(min_level={self.min_level})"
