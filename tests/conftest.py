"""Shared fixtures: a recording sink and a clean process-wide state."""

from __future__ import annotations

import threading

import pytest

from canopy.entry import LogEntry
from canopy.sinks.base import Sink


class RecordingSink(Sink):
    """Keeps every entry it receives, in order."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.entries: list[LogEntry] = []
        self.threads: list[str] = []
        self._lock = threading.Lock()

    def receive(self, entry: LogEntry) -> None:
        with self._lock:
            self.entries.append(entry)
            self.threads.append(threading.current_thread().name)

    @property
    def messages(self) -> list[str]:
        with self._lock:
            return [e.message for e in self.entries]

    @property
    def tags(self) -> list[str | None]:
        with self._lock:
            return [e.tag for e in self.entries]


@pytest.fixture(autouse=True)
def _reset_canopy():
    """Reset the process-wide dispatcher and crash hooks around each test."""
    from canopy.runtime import reset
    from canopy.sinks.crash_buffer import uninstall_crash_hooks

    reset()
    uninstall_crash_hooks()
    yield
    reset()
    uninstall_crash_hooks()


@pytest.fixture()
def recorder() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def make_recorder():
    """Factory for extra recording sinks: make_recorder(min_level=...)."""
    return RecordingSink
