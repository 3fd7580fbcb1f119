"""Diagnostics logging for canopy's own messages.

Canopy reports on itself (a crash buffer that could not be written, a
remote batch that was requeued, a sink that raised during fan-out) and
DebugSink prints the developer console through the same channel. All of
it goes through Python's logging system, never back through the
dispatcher, so a broken sink cannot recurse into itself.

Every call takes an event name and keyword fields:

    logger.warning("crash_buffer.flush_failed", path=..., error=...)

Fields canopy itself sets:
    canopy_level  canopy's level name (verbose, debug, info, ...). Both
                  VERBOSE and DEBUG map to stdlib DEBUG, so formatters
                  report this name in place of the stdlib one.
    tag, source   the resolved tag and ``file.py:42`` of a DebugSink
                  entry. Console output drops them again since DebugSink
                  already renders both into the message.

A formatter decides how records look (structlog or stdlib), a destination
decides where they go (stderr or a JSONL file). setup_logging(config)
builds one of each from CANOPY_LOG_FORMATTER and CANOPY_LOG_DESTINATION
and attaches the handler to the root logger. Both registries take custom
entries:

    from canopy.logging import register_destination
    register_destination("syslog", SyslogDestination)

Loggers handed out before setup_logging() keep working afterwards: they
store their fields on the stdlib record and the structlog formatter lifts
them back out.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from canopy.config import CanopyConfig

DEFAULT_JSONL_PATH = "~/.canopy/canopy.jsonl"

# Already part of a DebugSink console line
_CONSOLE_ELIDED = frozenset({"tag", "source"})


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class LogFormatter(Protocol):
    """How diagnostics records are rendered.

    setup() returns the logging.Formatter the handler uses; get_logger()
    returns a logger that takes ``logger.info("event", key=value)``.
    """

    def setup(self, config: CanopyConfig) -> logging.Formatter: ...

    def get_logger(self, name: str, **kwargs: Any) -> Any: ...


@runtime_checkable
class LogDestination(Protocol):
    """Where diagnostics records go. Constructed with the active config."""

    def create_handler(self, formatter: logging.Formatter) -> logging.Handler: ...

    def shutdown(self) -> None: ...


def _structured_fields(record: logging.LogRecord) -> dict[str, Any]:
    return dict(getattr(record, "_structured", None) or {})


# ---------------------------------------------------------------------------
# structlog
# ---------------------------------------------------------------------------


def _lift_record_fields(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Copy fields a pre-setup logger stored on its stdlib record."""
    record = event_dict.get("_record")
    if record is not None:
        for key, value in _structured_fields(record).items():
            event_dict.setdefault(key, value)
    return event_dict


def _apply_canopy_level(logger: Any, method_name: str, event_dict: dict) -> dict:
    level = event_dict.pop("canopy_level", None)
    if level:
        event_dict["level"] = str(level)
    return event_dict


def _elide_console_fields(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key in _CONSOLE_ELIDED:
        event_dict.pop(key, None)
    return event_dict


class StructlogFormatter:
    """structlog pipeline, bridged so stdlib records render the same way."""

    def setup(self, config: CanopyConfig) -> logging.Formatter:
        import structlog

        shared: list = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            _apply_canopy_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ]

        if config.log_format == "console":
            tail: list = [_elide_console_fields, structlog.dev.ConsoleRenderer()]
        else:
            tail = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                *shared,
                structlog.processors.StackInfoRenderer(),
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        return structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[_lift_record_fields, *shared],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *tail,
            ],
        )

    def get_logger(self, name: str, **kwargs: Any) -> Any:
        import structlog

        return structlog.get_logger(name, **kwargs)


# ---------------------------------------------------------------------------
# stdlib
# ---------------------------------------------------------------------------


class StdlibFormatter:
    """Plain logging formatters; structlog is never imported."""

    def setup(self, config: CanopyConfig) -> logging.Formatter:
        if config.log_format == "console":
            return _StdlibConsoleFormatter()
        return _StdlibJsonFormatter()

    def get_logger(self, name: str, **kwargs: Any) -> Any:
        return _StructuredStdlibLogger(logging.getLogger(name))


class _StdlibConsoleFormatter(logging.Formatter):
    """``time LEVEL name: event key=value ...``"""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def formatMessage(self, record: logging.LogRecord) -> str:
        fields = _structured_fields(record)
        level = fields.pop("canopy_level", None)
        if level:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = str(level).upper()
        line = super().formatMessage(record)
        pairs = [f"{k}={v}" for k, v in sorted(fields.items()) if k not in _CONSOLE_ELIDED]
        return " ".join([line, *pairs])


class _StdlibJsonFormatter(logging.Formatter):
    """One JSON object per record, fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _structured_fields(record)
        d: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": str(fields.pop("canopy_level", None) or record.levelname.lower()),
            "logger": record.name,
            "event": record.getMessage(),
        }
        d.update(fields)
        if record.exc_info and record.exc_info[1]:
            d["exception"] = self.formatException(record.exc_info)
        return json.dumps(d, default=str)


class _StructuredStdlibLogger:
    """Keyword-field logger on top of a stdlib Logger.

    Fields ride on the record as ``_structured``; the record keeps the
    caller's file, function and line.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _log(self, level: int, event: str, /, exc_info: Any = None, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        # _log <- debug/info/... <- caller
        self._logger.log(
            level,
            event,
            exc_info=exc_info,
            extra={"_structured": kwargs},
            stacklevel=3,
        )

    def debug(self, event: str, **kw: Any) -> None:
        self._log(logging.DEBUG, event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._log(logging.INFO, event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._log(logging.WARNING, event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._log(logging.ERROR, event, **kw)

    def critical(self, event: str, **kw: Any) -> None:
        self._log(logging.CRITICAL, event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        kw.setdefault("exc_info", True)
        self._log(logging.ERROR, event, **kw)


# ---------------------------------------------------------------------------
# Destinations
# ---------------------------------------------------------------------------


class StderrDestination:
    """The process's stderr. Default."""

    def __init__(self, config: CanopyConfig | None = None) -> None:
        self._handler: logging.Handler | None = None

    def create_handler(self, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        self._handler = handler
        return handler

    def shutdown(self) -> None:
        if self._handler is not None:
            self._handler.flush()
            self._handler = None


class JsonlFileDestination:
    """Appends to ``jsonl_path`` (default ~/.canopy/canopy.jsonl)."""

    def __init__(self, config: CanopyConfig) -> None:
        self._path = Path(config.jsonl_path or DEFAULT_JSONL_PATH).expanduser()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._handler: logging.Handler | None = None

    def create_handler(self, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.FileHandler(str(self._path), mode="a", encoding="utf-8")
        handler.setFormatter(formatter)
        self._handler = handler
        return handler

    def shutdown(self) -> None:
        if self._handler is not None:
            self._handler.close()
            self._handler = None


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------

_FORMATTERS: dict[str, type] = {
    "structlog": StructlogFormatter,
    "stdlib": StdlibFormatter,
}

_DESTINATIONS: dict[str, type] = {
    "stderr": StderrDestination,
    "jsonl": JsonlFileDestination,
}


def register_formatter(name: str, cls: type) -> None:
    """Add a formatter under *name*. Call before configure()."""
    _FORMATTERS[name] = cls


def register_destination(name: str, cls: type) -> None:
    """Add a destination under *name*; ``cls(config)`` builds it. Call before configure()."""
    _DESTINATIONS[name] = cls


# ---------------------------------------------------------------------------
# Module state
# ---------------------------------------------------------------------------

_active_formatter: LogFormatter | None = None
_active_destination: LogDestination | None = None


def _managed_handlers(root: logging.Logger) -> list[logging.Handler]:
    return [h for h in root.handlers if getattr(h, "_canopy_managed", False)]


def setup_logging(config: CanopyConfig) -> None:
    """Build the configured formatter and destination, attach to the root logger.

    Replaces the handler a previous call attached and leaves every other
    root handler alone.
    """
    global _active_formatter, _active_destination

    formatter_cls = _FORMATTERS.get(config.log_formatter)
    if formatter_cls is None:
        raise ValueError(
            f"Unknown log formatter: {config.log_formatter!r}. "
            f"Available: {list(_FORMATTERS)}. "
            f"Register custom formatters with register_formatter()."
        )

    dest_cls = _DESTINATIONS.get(config.log_destination)
    if dest_cls is None:
        raise ValueError(
            f"Unknown log destination: {config.log_destination!r}. "
            f"Available: {list(_DESTINATIONS)}. "
            f"Register custom destinations with register_destination()."
        )

    formatter = formatter_cls()
    destination = dest_cls(config)
    handler = destination.create_handler(formatter.setup(config))
    handler._canopy_managed = True  # type: ignore[attr-defined]

    root_logger = logging.getLogger()
    for h in _managed_handlers(root_logger):
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    if _active_destination is not None:
        _active_destination.shutdown()
    _active_formatter = formatter
    _active_destination = destination


def get_logger(name: str = "canopy", **kwargs: Any) -> Any:
    """Logger from the active formatter, or a stdlib-backed one before setup."""
    if _active_formatter is not None:
        return _active_formatter.get_logger(name, **kwargs)
    return _StructuredStdlibLogger(logging.getLogger(name))


def shutdown_logging() -> None:
    """Close the active destination and detach its handler."""
    global _active_formatter, _active_destination

    if _active_destination is not None:
        _active_destination.shutdown()
    root_logger = logging.getLogger()
    for h in _managed_handlers(root_logger):
        root_logger.removeHandler(h)
    _active_formatter = None
    _active_destination = None
