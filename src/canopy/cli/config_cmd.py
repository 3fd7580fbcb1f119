"""Config commands: show the resolved configuration."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
import yaml

from canopy.cli._errors import handle_error
from canopy.config import CanopyConfig

app = typer.Typer(help="Inspect the resolved canopy configuration.")


@app.command("show")
def show(
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="YAML config file to load."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of YAML."),
) -> None:
    """Print the config after applying the YAML file and CANOPY_* env vars."""
    try:
        cfg = CanopyConfig.load(file)
    except (ValueError, yaml.YAMLError) as exc:
        handle_error(f"Invalid configuration: {exc}")

    data = cfg.to_dict()
    if as_json:
        typer.echo(json.dumps(data, indent=2))
    else:
        typer.echo(yaml.safe_dump(data, sort_keys=False).rstrip())
