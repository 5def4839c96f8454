"""Durable key-value storage for local state.

Stores, the household session and shared state each persist a JSON document
under their own key.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


@runtime_checkable
class KeyValueStorage(Protocol):
    """Interface for the local durable store."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStorage:
    """In-process storage, used when no database path is configured."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SQLiteStorage:
    """SQLite-backed key-value storage with JSON values."""

    def __init__(self, db_path: str | Path):
        """Initialize the storage.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the database and create the schema."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(KV_SCHEMA)
        self._conn.commit()
        logger.info(f"Storage connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def get(self, key: str) -> Any | None:
        """Load the value stored under ``key``.

        A value that fails to decode is logged and treated as missing.
        """
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM kv_state WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None

        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt value for {key}, ignoring: {e}")
            return None

    def set(self, key: str, value: Any) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO kv_state (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), datetime.now().isoformat()),
        )
        conn.commit()

    def delete(self, key: str) -> None:
        conn = self._ensure_connected()
        conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))
        conn.commit()

    def keys(self) -> list[str]:
        """List stored keys."""
        conn = self._ensure_connected()
        return [row["key"] for row in conn.execute("SELECT key FROM kv_state ORDER BY key")]
