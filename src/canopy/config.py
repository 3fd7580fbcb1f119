"""Canopy configuration, env-var driven with optional YAML file.

All settings have safe defaults. Zero config gives a debug-mode
dispatcher with structured diagnostics on stderr.

Priority: env var > YAML file > default.
Env vars use the CANOPY_{FIELD_NAME} convention (e.g. CANOPY_BUILD_MODE=release).
YAML file default: ~/.canopy/config.yaml

Build mode:
    CANOPY_BUILD_MODE=debug    (default) every call is dispatched
    CANOPY_BUILD_MODE=release  calls are skipped unless a non-debug sink is planted

Diagnostics logging (internal messages from sinks, see canopy.logging):
    CANOPY_LOG_FORMATTER=structlog (default) | stdlib
    CANOPY_LOG_DESTINATION=stderr (default) | jsonl
    CANOPY_LOG_FORMAT=console (default) | json
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

_DEFAULT_PATH = Path("~/.canopy/config.yaml").expanduser()
DEFAULT_CRASH_BUFFER_PATH = "~/.canopy/canopy_crash_buffer.txt"

MAX_CRASH_BUFFER_CAPACITY = 100_000


class BuildMode(str, Enum):
    DEBUG = "debug"
    RELEASE = "release"


def _env(name: str, default: str) -> str:
    return os.environ.get(f"CANOPY_{name.upper()}", default)


@dataclass
class CanopyConfig:
    """Canopy configuration, env-var driven."""

    # --- Dispatch ---
    build_mode: BuildMode = field(
        default_factory=lambda: BuildMode(_env("build_mode", "debug").lower())
    )

    # --- Diagnostics logging: formatter x destination ---
    log_formatter: str = field(
        default_factory=lambda: _env("log_formatter", "structlog")
    )  # "structlog" | "stdlib"

    log_destination: str = field(
        default_factory=lambda: _env("log_destination", "stderr")
    )  # "stderr" | "jsonl"

    log_level: str = field(default_factory=lambda: _env("log_level", "INFO"))

    log_format: str = field(
        default_factory=lambda: _env("log_format", "console")
    )  # "console" | "json"

    jsonl_path: str | None = field(
        default_factory=lambda: os.environ.get("CANOPY_JSONL_PATH")
    )

    # --- Crash buffer ---
    crash_buffer_path: str = field(
        default_factory=lambda: _env("crash_buffer_path", DEFAULT_CRASH_BUFFER_PATH)
    )
    crash_buffer_capacity: int = field(
        default_factory=lambda: int(_env("crash_buffer_capacity", "100"))
    )

    def __post_init__(self) -> None:
        if not isinstance(self.build_mode, BuildMode):
            self.build_mode = BuildMode(str(self.build_mode).lower())
        if not 0 < self.crash_buffer_capacity <= MAX_CRASH_BUFFER_CAPACITY:
            raise ValueError(
                f"crash_buffer_capacity must be in 1..{MAX_CRASH_BUFFER_CAPACITY}, "
                f"got {self.crash_buffer_capacity}"
            )
        if self.log_format not in ("console", "json"):
            raise ValueError(
                f"log_format must be 'console' or 'json', got {self.log_format!r}"
            )

    @property
    def is_release(self) -> bool:
        return self.build_mode is BuildMode.RELEASE

    @property
    def resolved_crash_buffer_path(self) -> Path:
        return Path(self.crash_buffer_path).expanduser()

    @classmethod
    def load(cls, path: Path | None = None) -> CanopyConfig:
        """Load config from a YAML file, then override with env vars."""
        file_path = path or _DEFAULT_PATH
        file_values: dict[str, Any] = {}

        if file_path.exists():
            raw = yaml.safe_load(file_path.read_text()) or {}
            if isinstance(raw, dict):
                known = {f.name for f in fields(cls)}
                file_values = {k: v for k, v in raw.items() if k in known}

        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            env_key = f"CANOPY_{f.name.upper()}"
            if env_key in os.environ:
                continue  # default_factory reads the env var
            if f.name in file_values:
                kwargs[f.name] = file_values[f.name]

        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        d = {f.name: getattr(self, f.name) for f in fields(self)}
        d["build_mode"] = self.build_mode.value
        return d
