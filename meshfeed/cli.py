from __future__ import annotations

import logging

import typer
from rich import print
from rich.logging import RichHandler

from . import __version__
from .commands.config_cmds import config_path_cmd, config_show_cmd
from .commands.list_cmds import watch_bundles_cmd, watch_feed_cmd
from .commands.token_cmds import tokens_clear_cmd, tokens_list_cmd
from .config import load_config

app = typer.Typer(help="meshfeed: follow servald feeds and bundle lists")
config_app = typer.Typer(help="Inspect configuration")
tokens_app = typer.Typer(help="Manage cached continuation tokens")
app.add_typer(config_app, name="config")
app.add_typer(tokens_app, name="tokens")


def configure_logging(level: str, *, verbose: bool = False) -> None:
    resolved = logging.DEBUG if verbose else logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.WARNING
    logging.basicConfig(
        level=resolved,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


@app.callback()
def _root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    configure_logging(load_config().log_level, verbose=verbose)


@app.command("feed")
def feed(
    signing_key: str = typer.Argument(..., help="Signing key of the MeshMB feed"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Keep polling for new messages"),
    interval_s: float = typer.Option(None, "--interval-s", help="Polling interval in seconds"),
    resume: bool = typer.Option(
        False, "--resume", help="Continue from the cached token; print only new items"
    ),
) -> None:
    """Print a feed's messages."""
    watch_feed_cmd(signing_key, follow=follow, interval_s=interval_s, resume=resume)


@app.command("bundles")
def bundles(
    service: str = typer.Option(None, "--service", "-s", help="Only bundles of this service"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Keep polling for new bundles"),
    interval_s: float = typer.Option(None, "--interval-s", help="Polling interval in seconds"),
    resume: bool = typer.Option(
        False, "--resume", help="Continue from the cached token; print only new items"
    ),
) -> None:
    """Print the rhizome bundle list."""
    watch_bundles_cmd(service, follow=follow, interval_s=interval_s, resume=resume)


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""
    config_show_cmd()


@config_app.command("path")
def config_path() -> None:
    """Print the config file location."""
    config_path_cmd()


@tokens_app.command("list")
def tokens_list() -> None:
    """List cached continuation tokens."""
    tokens_list_cmd()


@tokens_app.command("clear")
def tokens_clear(
    collection_id: str = typer.Argument(None, help="Collection to clear (default: all)"),
) -> None:
    """Forget cached continuation tokens."""
    tokens_clear_cmd(collection_id)


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


def main() -> None:
    app()
