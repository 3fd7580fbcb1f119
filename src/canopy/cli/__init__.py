"""Canopy CLI -- typer-based command interface.

Commands:
    canopy crash show [--path P] [--tail N]   Print the crash-buffer file
    canopy crash clear [--path P]             Delete the crash-buffer file
    canopy config show [--file F] [--json]    Print the resolved configuration
"""

from __future__ import annotations

import typer

from canopy.cli import config_cmd, crash

app = typer.Typer(
    name="canopy",
    help="Inspect canopy crash buffers and configuration.",
    no_args_is_help=True,
)

app.add_typer(crash.app, name="crash")
app.add_typer(config_cmd.app, name="config")


def main() -> None:
    """Entry point for the canopy CLI."""
    app()
