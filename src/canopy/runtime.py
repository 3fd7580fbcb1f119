"""Process-wide handle: configure once, log everywhere.

The module-level functions (plant, tag, v, d, i, w, e, ...) all go
through one Canopy instance. It is built on first use with a default
config, or explicitly by configure() at startup. All shared state lives
inside that instance, behind its own lock.
"""

from __future__ import annotations

import threading
from typing import Any

from canopy.config import BuildMode, CanopyConfig
from canopy.dispatcher import Canopy, TaggedProxy
from canopy.entry import Message
from canopy.levels import LogLevel
from canopy.logging import get_logger
from canopy.sinks.base import Sink

logger = get_logger("canopy.runtime")

_canopy: Canopy | None = None
_config: CanopyConfig | None = None
_configured: bool = False
_state_lock = threading.Lock()


def configure(config: CanopyConfig | None = None) -> Canopy:
    """Set up diagnostics logging and the process-wide dispatcher.

    Called once at startup. Idempotent: a second call returns the
    existing dispatcher. Sinks planted before configure() stay planted.
    """
    global _canopy, _config, _configured

    with _state_lock:
        if _configured and _canopy is not None:
            return _canopy

        cfg = config or CanopyConfig.load()

        from canopy.logging import setup_logging

        setup_logging(cfg)

        if _canopy is None:
            _canopy = Canopy(build_mode=cfg.build_mode)
        else:
            _canopy.build_mode = cfg.build_mode
        _config = cfg
        _configured = True
        return _canopy


def get_canopy() -> Canopy:
    """The process-wide dispatcher, created with defaults if needed."""
    global _canopy

    canopy = _canopy
    if canopy is not None:
        return canopy
    with _state_lock:
        if _canopy is None:
            _canopy = Canopy(build_mode=_default_build_mode())
        return _canopy


def _default_build_mode() -> BuildMode:
    # Reached from the first log call: a bad CANOPY_* value must not raise there
    try:
        return CanopyConfig().build_mode
    except ValueError as exc:
        logger.warning(
            "runtime.invalid_env_config",
            error=str(exc),
            fallback=BuildMode.DEBUG.value,
        )
        return BuildMode.DEBUG


def get_config() -> CanopyConfig | None:
    return _config


def is_configured() -> bool:
    return _configured


def reset() -> None:
    """Reset for testing: drop the dispatcher, its sinks and logging setup."""
    global _canopy, _config, _configured

    from canopy.logging import shutdown_logging

    with _state_lock:
        if _canopy is not None:
            _canopy.uproot_all()
        shutdown_logging()
        _canopy = None
        _config = None
        _configured = False


# ---------------------------------------------------------------------------
# Module-level API
# ---------------------------------------------------------------------------


def plant(*sinks: Sink) -> None:
    get_canopy().plant(*sinks)


def uproot(sink: Sink) -> bool:
    return get_canopy().uproot(sink)


def uproot_all() -> None:
    get_canopy().uproot_all()


def forest() -> list[Sink]:
    return get_canopy().forest()


def tag(tag: str | None) -> TaggedProxy:
    return get_canopy().tag(tag)


def v(message: Message, *args: Any, tag: str | None = None,
      error: BaseException | None = None) -> None:
    get_canopy()._log(LogLevel.VERBOSE, message, args, tag, error, 2)


def d(message: Message, *args: Any, tag: str | None = None,
      error: BaseException | None = None) -> None:
    get_canopy()._log(LogLevel.DEBUG, message, args, tag, error, 2)


def i(message: Message, *args: Any, tag: str | None = None,
      error: BaseException | None = None) -> None:
    get_canopy()._log(LogLevel.INFO, message, args, tag, error, 2)


def w(message: Message, *args: Any, tag: str | None = None,
      error: BaseException | None = None) -> None:
    get_canopy()._log(LogLevel.WARNING, message, args, tag, error, 2)


def e(message: Message, *args: Any, tag: str | None = None,
      error: BaseException | None = None) -> None:
    get_canopy()._log(LogLevel.ERROR, message, args, tag, error, 2)
