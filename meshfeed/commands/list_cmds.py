from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

import typer
from rich import print
from rich.markup import escape

from ..config import load_config
from ..context import MeshContext
from ..errors import MeshfeedError
from ..servald import PlyMessage, RhizomeBundle
from ..sync.future_list import FutureList
from ..sync.observers import Added, ChangeEvent, Delivery, Removed, Reset, Updated


def render_message(message: PlyMessage) -> str:
    return f"[bold]{message.offset}[/bold] {escape(message.text)}"


def render_bundle(bundle: RhizomeBundle) -> str:
    service = f" [dim]{escape(bundle.service)}[/dim]" if bundle.service else ""
    return (
        f"{escape(bundle.display_name())} v{bundle.version}"
        f" [dim]{bundle.manifest_id[:16]}*[/dim]{service}"
    )


def format_event(event: ChangeEvent[Any], render: Callable[[Any], str]) -> str:
    if isinstance(event, Added):
        return f"[green]+[/green] {render(event.item)}"
    if isinstance(event, Updated):
        return f"[yellow]~[/yellow] {render(event.item)}"
    if isinstance(event, Removed):
        return f"[red]-[/red] {render(event.item)}"
    if isinstance(event, Reset):
        return "[dim]-- list reset --[/dim]"
    return f"[dim]{event!r}[/dim]"


def _load_history(target: FutureList[Any], timeout_s: float) -> None:
    while True:
        future = target.start()
        if future is None:
            return
        result = future.result(timeout_s)
        if not result.has_more or result.discarded:
            return


def watch_list(
    ctx: MeshContext,
    target: FutureList[Any],
    render: Callable[[Any], str],
    *,
    follow: bool,
    interval_s: float | None,
    resume: bool,
    on_loaded: Callable[[], None] | None = None,
) -> None:
    if not resume:
        target.invalidate()
    target.observers.subscribe(
        lambda event: print(format_event(event, render)), Delivery.BACKGROUND
    )
    timeout_s = ctx.config.request_timeout_s * 2
    try:
        _load_history(target, timeout_s)
    except (MeshfeedError, TimeoutError) as exc:
        ctx.ui.drain()
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc
    ctx.ui.drain()
    if on_loaded is not None:
        on_loaded()
    if not follow:
        return
    target.error_observers.subscribe(
        lambda error: print(f"[red]{escape(str(error))}[/red]"), Delivery.BACKGROUND
    )
    poller = ctx.poll(target, interval_s)
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        poller.cancel()


def watch_feed_cmd(
    signing_key: str,
    *,
    follow: bool,
    interval_s: float | None,
    resume: bool,
) -> None:
    with MeshContext(load_config()) as ctx:
        feed = ctx.message_feed(signing_key)

        def _header() -> None:
            if feed.feed_name:
                print(f"[bold]{escape(feed.feed_name)}[/bold] ({len(feed)} messages)")

        watch_list(
            ctx,
            feed,
            render_message,
            follow=follow,
            interval_s=interval_s,
            resume=resume,
            on_loaded=_header,
        )


def watch_bundles_cmd(
    service: str | None,
    *,
    follow: bool,
    interval_s: float | None,
    resume: bool,
) -> None:
    with MeshContext(load_config()) as ctx:
        bundles = ctx.bundle_list(service)
        watch_list(
            ctx,
            bundles,
            render_bundle,
            follow=follow,
            interval_s=interval_s,
            resume=resume,
        )
