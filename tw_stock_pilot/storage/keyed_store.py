"""
SQLite-backed key → JSON value store.

Holds transactions, the watchlist, advisor settings and anything else that a
browser build would keep in localStorage. Uses WAL journal mode for concurrent
read access during writes. All methods are synchronous — callers use
asyncio.to_thread() from async code.

Usage:
    store = KeyedStore("data/tw_stock_pilot.db")
    store.set("watchlist", {"symbols": ["2330"]})
    data = store.get("watchlist", default={})
"""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List

from loguru import logger

# ── SQL Statements ──────────────────────────────────────────────────────────

CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
)
"""

UPSERT_SQL = """
INSERT INTO kv (key, value, updated_at) VALUES (:key, :value, :updated_at)
ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
"""


class KeyedStoreError(Exception):
    """Base exception for KeyedStore operations."""


class KeyedStore:
    """Simple persistent keyed store.

    Thread-safe for single-writer, multiple-reader pattern (WAL mode).
    """

    def __init__(self, db_path: str = "data/tw_stock_pilot.db") -> None:
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = self._create_connection()
        self._ensure_tables()

    def _create_connection(self) -> sqlite3.Connection:
        """Create a SQLite connection with WAL mode and row factory."""
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        return conn

    def _ensure_tables(self) -> None:
        self._conn.executescript(CREATE_KV_TABLE)
        self._conn.commit()
        logger.debug("KeyedStore: table ensured at {}", self._db_path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
        logger.debug("KeyedStore: connection closed")

    def __enter__(self) -> "KeyedStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ── Access ──────────────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value for key, or default if missing."""
        row = self._conn.execute("SELECT value FROM kv WHERE key = :key", {"key": key}).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            raise KeyedStoreError(f"Corrupt value for key '{key}': {e}") from e

    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under key, replacing any previous one.

        Raises:
            KeyedStoreError: If value cannot be serialized to JSON.
        """
        try:
            encoded = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise KeyedStoreError(f"Value for key '{key}' is not JSON-serializable: {e}") from e

        self._conn.execute(
            UPSERT_SQL,
            {
                "key": key,
                "value": encoded,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        self._conn.commit()
        logger.debug("KeyedStore: set {}", key)

    def delete(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""
        deleted = self._conn.execute("DELETE FROM kv WHERE key = :key", {"key": key}).rowcount
        self._conn.commit()
        return bool(deleted)

    def keys(self, prefix: str = "") -> List[str]:
        """All keys starting with prefix, sorted."""
        rows = self._conn.execute(
            "SELECT key FROM kv WHERE substr(key, 1, :n) = :prefix ORDER BY key",
            {"n": len(prefix), "prefix": prefix},
        ).fetchall()
        return [row["key"] for row in rows]
