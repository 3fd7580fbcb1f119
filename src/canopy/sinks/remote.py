"""RemoteLogSink: batch entries and POST them as JSON, best effort.

Batches in memory, flushes when ``batch_size`` entries are buffered or on
a periodic timer. A failed send is retried with exponential backoff; after
the last retry the batch goes back to the head of the buffer for the next
flush. Delivery is never guaranteed.

Payload (POST, Content-Type: application/json):
    {
      "entries": [{"level": "error", "tag": "Net", "message": "...",
                   "error": "...", "timestamp": "2026-01-08T12:00:00+00:00",
                   "file": "client.py", "function": "fetch", "line": 42}, ...],
      "app_info": {"host": "...", "pid": 1234, "python": "3.12.1",
                   "environment": "debug"}
    }

Uses urllib.request (stdlib), no extra dependencies.
"""

from __future__ import annotations

import json
import os
import platform
import random
import socket
import threading
import time
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from canopy.config import BuildMode
from canopy.entry import LogEntry
from canopy.levels import LogLevel
from canopy.logging import get_logger
from canopy.sinks.base import Sink

logger = get_logger("canopy.sinks.remote")


@dataclass(frozen=True)
class RemoteLogConfig:
    """Where and how to ship batches."""

    endpoint: str
    api_key: str | None = None
    batch_size: int = 50
    flush_interval: float = 30.0
    retry_count: int = 3
    retry_delay: float = 5.0
    sampling_rate: float = 1.0
    timeout: float = 5.0
    environment: BuildMode = BuildMode.DEBUG

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.flush_interval <= 0:
            raise ValueError(f"flush_interval must be positive, got {self.flush_interval}")
        if self.retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {self.retry_count}")
        if not 0.0 <= self.sampling_rate <= 1.0:
            raise ValueError(f"sampling_rate must be in [0, 1], got {self.sampling_rate}")


def entry_to_dict(entry: LogEntry) -> dict[str, Any]:
    return {
        "level": str(entry.level),
        "tag": entry.tag,
        "message": entry.message,
        "error": str(entry.error) if entry.error is not None else None,
        "timestamp": datetime.fromtimestamp(entry.timestamp, tz=timezone.utc).isoformat(),
        "file": entry.location.file_name,
        "function": entry.location.function,
        "line": entry.location.line,
    }


def _app_info(environment: BuildMode) -> dict[str, Any]:
    return {
        "host": socket.gethostname(),
        "pid": os.getpid(),
        "python": platform.python_version(),
        "platform": platform.system(),
        "environment": environment.value,
    }


def urllib_transport(config: RemoteLogConfig, body: bytes) -> bool:
    """POST *body* to the endpoint. True only for HTTP 200."""
    headers = {"Content-Type": "application/json"}
    if config.api_key:
        headers["X-API-Key"] = config.api_key
    req = urllib.request.Request(config.endpoint, data=body, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=config.timeout) as resp:
        return resp.status == 200


class RemoteLogSink(Sink):
    """Ship entries to an HTTP collector in batches."""

    def __init__(
        self,
        config: RemoteLogConfig,
        min_level: LogLevel = LogLevel.INFO,
        *,
        transport: Callable[[RemoteLogConfig, bytes], bool] = urllib_transport,
        sleep: Callable[[float], None] = time.sleep,
        start_timer: bool = True,
    ) -> None:
        super().__init__(min_level)
        self._config = config
        self._transport = transport
        self._sleep = sleep
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._flushing = threading.Lock()
        self._timer: threading.Timer | None = None
        self._closed = False
        if start_timer:
            self._start_flush_timer()

    @property
    def config(self) -> RemoteLogConfig:
        return self._config

    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def should_sample(self, level: LogLevel) -> bool:
        if level >= LogLevel.WARNING:
            return True
        return random.random() <= self._config.sampling_rate

    def receive(self, entry: LogEntry) -> None:
        if not self.should_sample(entry.level):
            return
        record = entry_to_dict(entry)
        with self._lock:
            self._buffer.append(record)
            full = len(self._buffer) >= self._config.batch_size
        if full:
            threading.Thread(
                target=self.flush, name="canopy-remote-flush", daemon=True
            ).start()

    # -- flushing --------------------------------------------------------

    def _start_flush_timer(self) -> None:
        if self._closed:
            return
        self._timer = threading.Timer(self._config.flush_interval, self._periodic_flush)
        self._timer.daemon = True
        self._timer.start()

    def _periodic_flush(self) -> None:
        self.flush()
        self._start_flush_timer()

    def flush(self, *, wait: bool = False) -> bool:
        """Send everything buffered. Returns True if the batch was accepted.

        Only one flush runs at a time. A concurrent call returns False
        straight away and leaves the buffer to the running flush, unless
        *wait* is set, in which case it queues behind it.
        """
        if not self._flushing.acquire(blocking=wait):
            return False
        try:
            with self._lock:
                batch = self._buffer[:]
                self._buffer.clear()
            if not batch:
                return True
            if self._send_with_retry(batch):
                return True
            with self._lock:
                self._buffer[:0] = batch
            logger.warning(
                "remote_sink.batch_requeued",
                endpoint=self._config.endpoint,
                entries=len(batch),
            )
            return False
        finally:
            self._flushing.release()

    def _send_with_retry(self, batch: list[dict[str, Any]]) -> bool:
        body = json.dumps(
            {"entries": batch, "app_info": _app_info(self._config.environment)},
            default=str,
        ).encode("utf-8")

        delay = self._config.retry_delay
        for attempt in range(self._config.retry_count + 1):
            try:
                if self._transport(self._config, body):
                    return True
            except Exception as exc:
                logger.debug(
                    "remote_sink.send_failed",
                    endpoint=self._config.endpoint,
                    attempt=attempt + 1,
                    error=str(exc),
                )
            if attempt < self._config.retry_count:
                self._sleep(delay)
                delay *= 2
        return False

    def close(self) -> None:
        """Stop the timer and make a final flush attempt."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.flush(wait=True)

    def __repr__(self) -> str:
        return f"RemoteLogSink(endpoint={self._config.endpoint!r}, min_level={self.min_level})"
