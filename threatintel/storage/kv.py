"""Key-value store for JSON counter records with optional expiry."""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


class BaseKVStore(ABC):
    """Get/put/delete of JSON values by key."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the decoded JSON value, or None when absent or expired."""
        ...

    @abstractmethod
    async def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...


_KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL
);
"""


class SQLiteKVStore(BaseKVStore):
    """KV store in a local SQLite file. Expired keys are dropped on read."""

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time):
        path = Path(db_path)
        if db_path != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_KV_SCHEMA)
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        row = self._conn.execute(
            "SELECT value, expires_at FROM kv_store WHERE key = ?", (key,),
        ).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and expires_at <= self._clock():
            self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self._conn.commit()
            return None
        return json.loads(value)

    async def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._conn.execute(
            "INSERT OR REPLACE INTO kv_store (key, value, expires_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), expires_at),
        )
        self._conn.commit()

    async def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
