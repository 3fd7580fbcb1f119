"""canopy: a small logging facade that fans calls out to pluggable sinks.

Public API:
    plant(*sinks)      -- Register sinks ("trees") with the process-wide dispatcher
    uproot_all()       -- Remove every sink
    tag(name)          -- Proxy whose v/d/i/w/e calls carry the tag
    v/d/i/w/e(msg, *args, tag=None, error=None)
                       -- Log at verbose/debug/info/warning/error
    configure(cfg)     -- Set up diagnostics logging and build mode (once, at startup)
    reset()            -- Reset for testing

Sinks:
    DebugSink          -- Readable console lines (debug builds)
    AsyncSink          -- Runs another sink on a background thread
    CrashBufferSink    -- Last N lines in memory, written out on crash
    RemoteLogSink      -- Batched JSON over HTTP, best effort

Usage:
    import canopy
    from canopy.sinks import DebugSink

    canopy.plant(DebugSink())
    canopy.i("User %s has %d items", "Alice", 5)
    canopy.tag("Network").w("Slow response", error=exc)
"""

from canopy.config import BuildMode, CanopyConfig
from canopy.context import scope, with_scope
from canopy.dispatcher import Canopy, TaggedProxy
from canopy.entry import LogEntry, SourceLocation
from canopy.formatting import format_message
from canopy.levels import LogLevel
from canopy.runtime import (
    configure,
    d,
    e,
    forest,
    get_canopy,
    i,
    is_configured,
    plant,
    reset,
    tag,
    uproot,
    uproot_all,
    v,
    w,
)
from canopy.sinks import (
    AsyncSink,
    CrashBufferSink,
    DebugSink,
    RemoteLogConfig,
    RemoteLogSink,
    Sink,
)

__version__ = "0.1.0"

__all__ = [
    # Dispatch
    "plant",
    "uproot",
    "uproot_all",
    "forest",
    "tag",
    "v",
    "d",
    "i",
    "w",
    "e",
    # Lifecycle
    "configure",
    "get_canopy",
    "is_configured",
    "reset",
    # Types
    "Canopy",
    "TaggedProxy",
    "LogLevel",
    "LogEntry",
    "SourceLocation",
    "BuildMode",
    "CanopyConfig",
    # Context
    "scope",
    "with_scope",
    # Formatting
    "format_message",
    # Sinks
    "Sink",
    "DebugSink",
    "AsyncSink",
    "CrashBufferSink",
    "RemoteLogConfig",
    "RemoteLogSink",
]
