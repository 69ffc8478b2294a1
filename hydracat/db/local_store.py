"""
Local Key-Value Store
=====================
Durable string storage on the device. Two consumers:
- the daily summary cache (one JSON blob per owner/pet/day)
- the offline operation queue (one JSON blob per queued operation)

SqliteLocalStore is the production implementation. MemoryLocalStore keeps
everything in a dict and is used by tests and ephemeral sessions.
Both raise LocalStoreError on I/O failure; callers decide whether a
failure is fatal.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class LocalStoreError(Exception):
    """Reading or writing the on-device store failed."""


class LocalStore:
    """Interface shared by every local store implementation."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> list[str]:
        """Keys starting with prefix, sorted ascending."""
        raise NotImplementedError


class SqliteLocalStore(LocalStore):
    """Single-table sqlite key-value store."""

    def __init__(self, db_path: str = "hydracat_local.sqlite3") -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            self.conn.commit()
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Could not open local store at {db_path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Read failed for {key}: {exc}") from exc
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                    (key, value),
                )
                self.conn.commit()
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Write failed for {key}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            with self._lock:
                self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                self.conn.commit()
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Delete failed for {key}: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        # LIKE treats _ as a wildcard, so filter the prefix in Python.
        try:
            with self._lock:
                rows = self.conn.execute(
                    "SELECT key FROM kv_store ORDER BY key"
                ).fetchall()
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Key scan failed: {exc}") from exc
        return [row[0] for row in rows if row[0].startswith(prefix)]

    def close(self) -> None:
        with self._lock:
            self.conn.close()


class MemoryLocalStore(LocalStore):
    """Dict-backed store with the same contract."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
