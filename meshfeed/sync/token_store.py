from __future__ import annotations

import datetime as dt
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TOKEN_DB_PATH = Path("~/.meshfeed/tokens.sqlite").expanduser()


@dataclass(frozen=True)
class StoredToken:
    collection_id: str
    token: str
    updated_at: str


class TokenStore:
    """Continuation tokens kept across restarts, keyed by collection identity."""

    def __init__(self, path: Path | str = DEFAULT_TOKEN_DB_PATH) -> None:
        if str(path) != ":memory:":
            path = Path(path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(str(path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_tokens (
                collection_id TEXT PRIMARY KEY,
                token TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self.conn.commit()

    def get(self, collection_id: str) -> str | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT token FROM sync_tokens WHERE collection_id = ?",
                (collection_id,),
            ).fetchone()
        if row is None:
            return None
        return str(row["token"]) or None

    def set(self, collection_id: str, token: str) -> None:
        now = dt.datetime.now(dt.UTC).isoformat()
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO sync_tokens(collection_id, token, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(collection_id) DO UPDATE
                SET token = excluded.token, updated_at = excluded.updated_at
                """,
                (collection_id, token, now),
            )
            self.conn.commit()

    def clear(self, collection_id: str) -> bool:
        with self._lock:
            cur = self.conn.execute(
                "DELETE FROM sync_tokens WHERE collection_id = ?", (collection_id,)
            )
            self.conn.commit()
        return cur.rowcount > 0

    def clear_all(self) -> int:
        with self._lock:
            cur = self.conn.execute("DELETE FROM sync_tokens")
            self.conn.commit()
        return int(cur.rowcount)

    def all(self) -> list[StoredToken]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT collection_id, token, updated_at FROM sync_tokens ORDER BY collection_id"
            ).fetchall()
        return [StoredToken(row["collection_id"], row["token"], row["updated_at"]) for row in rows]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
