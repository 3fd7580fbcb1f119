"""Log levels, ordered by severity.

Used both as the severity of a single call and as a sink's minimum
threshold (``sink.min_level``).
"""

from __future__ import annotations

from enum import IntEnum

_ALIASES = {"warn": "warning", "trace": "verbose", "err": "error"}


class LogLevel(IntEnum):
    """verbose < debug < info < warning < error."""

    VERBOSE = 2
    DEBUG = 3
    INFO = 4
    WARNING = 5
    ERROR = 6

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str | int | LogLevel) -> LogLevel:
        """Resolve a config value ("warn", "INFO", 4) to a LogLevel."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        name = value.strip().lower()
        name = _ALIASES.get(name, name)
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(
                f"Unknown log level: {value!r}. "
                f"Available: {[str(level) for level in cls]}"
            ) from None
