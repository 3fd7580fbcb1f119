"""Value types passed from the dispatcher to sinks."""

from __future__ import annotations

import os
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Union

from canopy.levels import LogLevel

Message = Union[str, Callable[[], str]]


@dataclass(frozen=True)
class SourceLocation:
    """Where a log call was issued."""

    file: str = ""
    function: str = ""
    line: int = 0

    @property
    def file_name(self) -> str:
        return os.path.basename(self.file)

    def __str__(self) -> str:
        return f"{self.file_name}:{self.line}"

    @classmethod
    def capture(cls, depth: int = 1) -> SourceLocation:
        """Location of the frame *depth* levels above the caller."""
        try:
            frame = sys._getframe(depth + 1)
        except ValueError:
            return cls()
        code = frame.f_code
        return cls(code.co_filename, code.co_name, frame.f_lineno)


@dataclass(frozen=True)
class LogEntry:
    """One formatted log call, as a sink receives it."""

    level: LogLevel
    tag: str | None
    message: str
    error: BaseException | None = None
    location: SourceLocation = field(default_factory=SourceLocation)
    timestamp: float = field(default_factory=time.time)


class LazyMessage:
    """Defers building a message until a sink asks for it.

    The factory runs at most once, however many sinks read the message.
    """

    __slots__ = ("_factory", "_value", "_lock")

    def __init__(self, factory: Callable[[], str]) -> None:
        self._factory: Callable[[], str] | None = factory
        self._value: str | None = None
        self._lock = threading.Lock()

    def __call__(self) -> str:
        if self._factory is not None:
            with self._lock:
                if self._factory is not None:
                    self._value = str(self._factory())
                    self._factory = None
        return self._value  # type: ignore[return-value]


def materialize(message: Message) -> str:
    """Turn a string or zero-arg callable into the message string."""
    if callable(message):
        return str(message())
    return message
