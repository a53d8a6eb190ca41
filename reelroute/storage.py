"""Persistence sinks for cost snapshots and configuration overrides."""

from __future__ import annotations

import json
import sqlite3
from threading import Lock
from typing import Any, Dict, Protocol


class PersistenceSink(Protocol):
    """Durable key-value store interface."""

    def set_override(self, key: str, value: Any, persist: bool = True) -> None:
        ...

    def get(self, key: str, default: Any = None) -> Any:
        ...


def cost_key(day: str, name: str) -> str:
    """Key for a daily cost snapshot: cost.tracking.<YYYY-MM-DD>.<service|total>."""
    return f"cost.tracking.{day}.{name}"


class InMemorySink:
    """
    In-memory sink (default).

    Values set with persist=False live in a separate overlay and are
    dropped by clear_transient().
    """

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self._transient: Dict[str, Any] = {}

    def set_override(self, key: str, value: Any, persist: bool = True) -> None:
        if persist:
            self._values[key] = value
            self._transient.pop(key, None)
        else:
            self._transient[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._transient:
            return self._transient[key]
        return self._values.get(key, default)

    def keys(self, prefix: str = "") -> list[str]:
        names = set(self._values) | set(self._transient)
        return sorted(k for k in names if k.startswith(prefix))

    def clear_transient(self) -> None:
        self._transient.clear()


class SQLiteSink:
    """SQLite-backed sink. Values are stored JSON-encoded."""

    def __init__(self, db_path: str = "reelroute.db"):
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._lock = Lock()
        self._transient: Dict[str, Any] = {}
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS overrides (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._conn.commit()

    def set_override(self, key: str, value: Any, persist: bool = True) -> None:
        if not persist:
            self._transient[key] = value
            return
        encoded = json.dumps(value)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO overrides (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                """,
                (key, encoded),
            )
            self._conn.commit()
        self._transient.pop(key, None)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._transient:
            return self._transient[key]
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM overrides WHERE key = ?",
                (key,),
            ).fetchone()
        if not row:
            return default
        return json.loads(row["value"])

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM overrides WHERE key LIKE ? ORDER BY key",
                (prefix + "%",),
            ).fetchall()
        return [row["key"] for row in rows]

    def close(self) -> None:
        self._conn.close()
