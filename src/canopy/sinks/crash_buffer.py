"""CrashBufferSink: keep the last N lines in memory, write them out on a crash.

The buffer is a bounded deque: once it holds ``capacity`` lines, each new
line evicts the oldest. flush() writes the snapshot to a text file, one
``[level] tag: message`` per line, replacing the file atomically.

Capacity and path default to ``crash_buffer_capacity`` and
``crash_buffer_path`` from the active CanopyConfig, so the sink and
``canopy crash show`` agree on the file.

flush() runs automatically on:
    - SIGABRT delivered to the process (kill -ABRT, os.abort from Python)
    - an uncaught exception (sys.excepthook, threading.excepthook)
    - normal interpreter exit (atexit)

Native faults (SIGSEGV, SIGBUS, SIGFPE, SIGILL) are left to faulthandler.
A Python-level handler for them would never run: the C handler returns,
the faulting instruction runs again and the process spins. faulthandler
writes the Python traceback of every thread to ``<stem>.fault.txt`` next
to the crash artifact and lets the process die. The ring buffer itself is
not written on a native fault; the file holds whatever the last flush
wrote.

Signal path:
    The handler only sets a flag and tries a non-blocking flush. If the
    buffer lock is held (the signal interrupted an append on the main
    thread), the flag stays set and the flush happens at the next
    checkpoint: the next log call on the sink, or the exit hook.

The hooks reach the sink through a module-level weak reference. The sink
is owned by whoever constructed it; the most recently constructed sink
with install_hooks=True is the one flushed.
"""

from __future__ import annotations

import atexit
import faulthandler
import os
import signal
import sys
import tempfile
import threading
import weakref
from collections import deque
from pathlib import Path
from types import FrameType
from typing import IO, Any, Callable

from canopy.config import MAX_CRASH_BUFFER_CAPACITY, CanopyConfig
from canopy.entry import LogEntry
from canopy.levels import LogLevel
from canopy.logging import get_logger
from canopy.sinks.base import Sink

logger = get_logger("canopy.sinks.crash_buffer")

# Delivered asynchronously, so a Python handler gets to run
_HANDLED_SIGNALS = ("SIGABRT",)


def format_line(entry: LogEntry) -> str:
    return f"[{entry.level}] {entry.tag or ''}: {entry.message}"


def fault_log_path(path: Path) -> Path:
    """Companion file for faulthandler output: buffer.txt -> buffer.fault.txt."""
    return path.with_name(f"{path.stem}.fault.txt")


def _active_config() -> CanopyConfig:
    from canopy.runtime import get_config

    return get_config() or CanopyConfig.load()


class CrashBufferSink(Sink):
    """Bounded in-memory ring of recent log lines, persisted on crash."""

    def __init__(
        self,
        capacity: int | None = None,
        path: str | Path | None = None,
        *,
        min_level: LogLevel = LogLevel.VERBOSE,
        install_hooks: bool = True,
    ) -> None:
        if capacity is None or path is None:
            cfg = _active_config()
            if capacity is None:
                capacity = cfg.crash_buffer_capacity
            if path is None:
                path = cfg.crash_buffer_path
        if not isinstance(capacity, int) or isinstance(capacity, bool):
            raise TypeError(f"capacity must be an int, got {type(capacity).__name__}")
        if not 0 < capacity <= MAX_CRASH_BUFFER_CAPACITY:
            raise ValueError(
                f"capacity must be in 1..{MAX_CRASH_BUFFER_CAPACITY}, got {capacity}"
            )
        super().__init__(min_level)
        self.capacity = capacity
        self.path = Path(path).expanduser()
        self._buffer: deque[str] = deque(maxlen=capacity)
        self._lock = threading.Lock()

        if install_hooks:
            install_crash_hooks(self)

    def receive(self, entry: LogEntry) -> None:
        checkpoint()
        line = format_line(entry)
        with self._lock:
            self._buffer.append(line)

    def recent_logs(self) -> str:
        with self._lock:
            return "\n".join(self._buffer)

    def lines(self) -> list[str]:
        with self._lock:
            return list(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    def flush(self, *, blocking: bool = True) -> bool:
        """Write the buffer to ``self.path``. Never raises.

        Returns False if the write failed or, with blocking=False, the
        buffer lock was busy.
        """
        if not self._lock.acquire(blocking=blocking):
            return False
        try:
            payload = "\n".join(self._buffer).encode("utf-8")
        finally:
            self._lock.release()

        try:
            _atomic_write(self.path, payload)
        except OSError as exc:
            logger.warning(
                "crash_buffer.flush_failed",
                path=str(self.path),
                error=str(exc),
            )
            return False
        return True

    def close(self) -> None:
        if _instance is not None and _instance() is self:
            uninstall_crash_hooks()

    def __repr__(self) -> str:
        return f"CrashBufferSink(capacity={self.capacity}, path={str(self.path)!r})"


def _atomic_write(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# Process hooks
# ---------------------------------------------------------------------------

_instance: weakref.ref[CrashBufferSink] | None = None
_pending_flush = threading.Event()
_hooks_lock = threading.Lock()
_installed = False
_previous_signal_handlers: dict[int, Any] = {}
_previous_excepthook: Callable[..., Any] | None = None
_previous_threading_excepthook: Callable[..., Any] | None = None
_fault_file: IO[str] | None = None
_faulthandler_was_enabled = False


def active_instance() -> CrashBufferSink | None:
    return _instance() if _instance is not None else None


def flush_pending() -> bool:
    """True when a signal asked for a flush that has not happened yet."""
    return _pending_flush.is_set()


def checkpoint(*, blocking: bool = True) -> bool:
    """Run a flush requested by a signal handler, if one is pending."""
    if not _pending_flush.is_set():
        return False
    sink = active_instance()
    if sink is None:
        _pending_flush.clear()
        return False
    if sink.flush(blocking=blocking):
        _pending_flush.clear()
        return True
    return False


def _flush_now() -> None:
    sink = active_instance()
    if sink is not None:
        sink.flush()


def _on_fatal_signal(signum: int, frame: FrameType | None) -> None:
    _pending_flush.set()
    checkpoint(blocking=False)

    previous = _previous_signal_handlers.get(signum, signal.SIG_DFL)
    if callable(previous):
        previous(signum, frame)
        return
    if previous == signal.SIG_IGN:
        return
    signal.signal(signum, signal.SIG_DFL)
    signal.raise_signal(signum)


def _on_uncaught_exception(exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
    _flush_now()
    hook = _previous_excepthook or sys.__excepthook__
    hook(exc_type, exc, tb)


def _on_uncaught_thread_exception(args: threading.ExceptHookArgs) -> None:
    _flush_now()
    hook = _previous_threading_excepthook or threading.__excepthook__
    hook(args)


def _on_exit() -> None:
    checkpoint()
    _flush_now()


def _point_faulthandler_at(path: Path) -> None:
    """Send faulthandler output for native faults to the sink's companion file.

    Appends, so the traceback of a previous crash survives the next start.
    Re-enabling while enabled only swaps the file; the C handlers stay put.
    """
    global _fault_file

    target = fault_log_path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        new_file = open(target, "a", encoding="utf-8")
    except OSError as exc:
        logger.warning("crash_buffer.fault_log_unavailable", path=str(target), error=str(exc))
        return

    faulthandler.enable(file=new_file, all_threads=True)
    if _fault_file is not None:
        _fault_file.close()
    _fault_file = new_file


def _release_faulthandler() -> None:
    global _fault_file

    if _fault_file is None:
        return
    faulthandler.disable()
    _fault_file.close()
    _fault_file = None
    if _faulthandler_was_enabled and sys.__stderr__ is not None:
        try:
            faulthandler.enable(file=sys.__stderr__)
        except (OSError, ValueError) as exc:
            logger.debug("crash_buffer.faulthandler_not_restored", error=str(exc))


def install_crash_hooks(sink: CrashBufferSink) -> None:
    """Point the process hooks at *sink*, installing them on first use.

    Signal handlers can only be installed from the main thread; from any
    other thread only the exception, exit and faulthandler hooks are
    installed.
    """
    global _instance, _installed, _previous_excepthook, _previous_threading_excepthook
    global _faulthandler_was_enabled

    with _hooks_lock:
        _instance = weakref.ref(sink)
        if _installed:
            _point_faulthandler_at(sink.path)
            return

        _faulthandler_was_enabled = faulthandler.is_enabled()
        _point_faulthandler_at(sink.path)

        _previous_excepthook = sys.excepthook
        sys.excepthook = _on_uncaught_exception
        _previous_threading_excepthook = threading.excepthook
        threading.excepthook = _on_uncaught_thread_exception
        atexit.register(_on_exit)

        # After faulthandler, which also claims SIGABRT at the C level
        if threading.current_thread() is threading.main_thread():
            for name in _HANDLED_SIGNALS:
                signum = getattr(signal, name, None)
                if signum is None:
                    continue
                try:
                    _previous_signal_handlers[signum] = signal.signal(signum, _on_fatal_signal)
                except (OSError, ValueError) as exc:
                    logger.debug("crash_buffer.signal_unavailable", signal=name, error=str(exc))
        else:
            logger.warning(
                "crash_buffer.signals_skipped",
                reason="hooks installed outside the main thread",
            )
        _installed = True


def uninstall_crash_hooks() -> None:
    """Restore the hooks that were in place before install_crash_hooks()."""
    global _instance, _installed, _previous_excepthook, _previous_threading_excepthook

    with _hooks_lock:
        _instance = None
        _pending_flush.clear()
        if not _installed:
            return

        if sys.excepthook is _on_uncaught_exception:
            sys.excepthook = _previous_excepthook or sys.__excepthook__
        if threading.excepthook is _on_uncaught_thread_exception:
            threading.excepthook = _previous_threading_excepthook or threading.__excepthook__
        _previous_excepthook = None
        _previous_threading_excepthook = None
        atexit.unregister(_on_exit)

        if threading.current_thread() is threading.main_thread():
            for signum, previous in _previous_signal_handlers.items():
                try:
                    signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
                except (OSError, ValueError):
                    pass
        _previous_signal_handlers.clear()
        _release_faulthandler()
        _installed = False
