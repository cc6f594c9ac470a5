"""Durable key/value state for cost tracking and rate-limit throttling.

Values are JSON-encoded. Keys are flat dotted strings
(e.g. ``costTracking.repositoryCost.<encoded-path>``); callers enumerate a
namespace with ``keys(prefix)``.

Every store failure surfaces as LedgerUnavailable so callers can degrade to
a no-op instead of aborting the LLM call that triggered the write.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..core.errors import LedgerUnavailable

_SCHEMA = """
CREATE TABLE IF NOT EXISTS state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class KeyValueStore(ABC):
    """Minimal durable key/value contract."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the stored value, or None when the key is absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]: ...


class MemoryStore(KeyValueStore):
    """Process-local store, used in tests and when persistence is disabled."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock:
            self._data[key] = encoded

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]


class SQLiteStore(KeyValueStore):
    """SQLite-backed store; one short-lived connection per operation.

    Operations are called from worker threads (``asyncio.to_thread``), so no
    connection is shared between calls.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def _get_connection(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.executescript(_SCHEMA)
        return conn

    def get(self, key: str) -> Any:
        try:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT value FROM state WHERE key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise LedgerUnavailable(f"Failed to read {key!r} from {self.path}: {e}")
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return None

    def set(self, key: str, value: Any) -> None:
        try:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO state (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                    """,
                    (key, json.dumps(value)),
                )
                conn.commit()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise LedgerUnavailable(f"Failed to write {key!r} to {self.path}: {e}")

    def keys(self, prefix: str = "") -> list[str]:
        try:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    "SELECT key FROM state WHERE substr(key, 1, length(?)) = ? ORDER BY key",
                    (prefix, prefix),
                ).fetchall()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise LedgerUnavailable(f"Failed to list keys in {self.path}: {e}")
        return [row["key"] for row in rows]
