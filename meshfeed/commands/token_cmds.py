from __future__ import annotations

import typer
from rich import print
from rich.console import Console
from rich.table import Table

from ..config import load_config
from ..sync.token_store import TokenStore


def _open_store() -> TokenStore:
    cfg = load_config()
    if not cfg.token_db_path:
        print("[yellow]Token cache disabled (token_db_path is empty)[/yellow]")
        raise typer.Exit(code=1)
    return TokenStore(cfg.token_db_path)


def tokens_list_cmd() -> None:
    store = _open_store()
    try:
        rows = store.all()
    finally:
        store.close()
    if not rows:
        print("[dim]No cached tokens[/dim]")
        return
    table = Table("collection", "token", "updated")
    for row in rows:
        table.add_row(row.collection_id, row.token, row.updated_at)
    Console().print(table)


def tokens_clear_cmd(collection_id: str | None) -> None:
    store = _open_store()
    try:
        if collection_id:
            if not store.clear(collection_id):
                print(f"[yellow]No cached token for {collection_id}[/yellow]")
                raise typer.Exit(code=1)
            print(f"Cleared token for {collection_id}")
            return
        count = store.clear_all()
    finally:
        store.close()
    print(f"Cleared {count} cached token(s)")
