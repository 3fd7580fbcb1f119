"""Crash-buffer commands: show, clear."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from canopy.cli._errors import handle_error
from canopy.config import CanopyConfig

app = typer.Typer(help="Inspect the crash-buffer file written on abnormal exit.")


def _resolve(path: Optional[Path]) -> Path:
    if path is not None:
        return path.expanduser()
    return CanopyConfig.load().resolved_crash_buffer_path


@app.command("show")
def show(
    path: Optional[Path] = typer.Option(None, help="Crash-buffer file (default: from config)."),
    tail: int = typer.Option(0, min=0, help="Only print the last N lines (0 = all)."),
) -> None:
    """Print the lines captured before the last crash."""
    target = _resolve(path)
    if not target.exists():
        handle_error(f"No crash buffer at {target}")

    try:
        lines = target.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        handle_error(f"Could not read {target}: {exc}")

    if tail:
        lines = lines[-tail:]
    if not lines:
        typer.echo(f"Crash buffer at {target} is empty.")
        return
    for line in lines:
        typer.echo(line)


@app.command("clear")
def clear(
    path: Optional[Path] = typer.Option(None, help="Crash-buffer file (default: from config)."),
) -> None:
    """Delete the crash-buffer file."""
    target = _resolve(path)
    if not target.exists():
        typer.echo(f"Nothing to clear at {target}.")
        return
    try:
        target.unlink()
    except OSError as exc:
        handle_error(f"Could not delete {target}: {exc}")
    typer.echo(f"Removed {target}.")
