"""Sinks: pluggable consumers of log entries."""

from canopy.sinks.async_sink import AsyncSink
from canopy.sinks.base import Sink
from canopy.sinks.crash_buffer import CrashBufferSink
from canopy.sinks.debug_sink import DebugSink
from canopy.sinks.remote import RemoteLogConfig, RemoteLogSink

__all__ = [
    "Sink",
    "AsyncSink",
    "CrashBufferSink",
    "DebugSink",
    "RemoteLogConfig",
    "RemoteLogSink",
]
