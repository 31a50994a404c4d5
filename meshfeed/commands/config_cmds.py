from __future__ import annotations

import json

import typer
from rich import print

from ..config import get_config_path, load_config, read_config_file


def config_show_cmd() -> None:
    try:
        read_config_file()
    except ValueError as exc:
        print(f"[red]{get_config_path()}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(load_config().as_dict(), indent=2))


def config_path_cmd() -> None:
    path = get_config_path()
    suffix = "" if path.exists() else " [dim](missing)[/dim]"
    print(f"{path}{suffix}")
