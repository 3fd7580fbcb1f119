"""DebugSink: human-readable console output through the diagnostics logger."""

from __future__ import annotations

import os
from typing import Any, Sequence

from canopy import context
from canopy.entry import LogEntry, Message, SourceLocation, materialize
from canopy.formatting import format_message
from canopy.levels import LogLevel
from canopy.logging import get_logger
from canopy.sinks.base import Sink

_METHODS = {
    LogLevel.VERBOSE: "debug",
    LogLevel.DEBUG: "debug",
    LogLevel.INFO: "info",
    LogLevel.WARNING: "warning",
    LogLevel.ERROR: "error",
}


def auto_tag(file: str) -> str:
    """Tag derived from a source path: 'app/checkout.py' -> 'checkout'."""
    stem = os.path.basename(file).split(".")[0]
    return stem or "Canopy"


def render(entry: LogEntry) -> str:
    """'[tag] message | Error: reason (file.py:42)'."""
    text = entry.message
    if entry.error is not None:
        text = f"{text} | Error: {entry.error}"
    text = f"{text} ({entry.location})"
    if entry.tag:
        text = f"[{entry.tag}] {text}"
    return text


class DebugSink(Sink):
    """Development sink: one readable line per call on the console.

    When no tag is set anywhere, the tag falls back to the calling
    module's file stem. Release builds skip dispatch entirely if this is
    the only kind of sink planted.
    """

    debug_only = True

    def __init__(self, min_level: LogLevel = LogLevel.VERBOSE, logger_name: str = "canopy.console") -> None:
        super().__init__(min_level)
        self._logger_name = logger_name

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
        location = location or SourceLocation()
        effective_tag = (
            self.take_explicit_tag()
            or tag
            or context.get_current()
            or auto_tag(location.file)
        )
        self.receive(
            LogEntry(
                level=level,
                tag=effective_tag,
                message=format_message(materialize(message), args),
                error=error,
                location=location,
            )
        )

    def receive(self, entry: LogEntry) -> None:
        # Resolved per call so a later setup_logging() takes effect
        logger = get_logger(self._logger_name)
        getattr(logger, _METHODS[entry.level])(
            render(entry),
            canopy_level=str(entry.level),
            tag=entry.tag,
            source=str(entry.location),
        )
