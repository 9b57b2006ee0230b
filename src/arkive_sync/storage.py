"""Durable local storage for arkive-sync.

A small key/value store on top of SQLite holding the device id, the pending
operation queue and related sync bookkeeping. Values are strings; callers
serialize to JSON themselves.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

__all__ = ["LocalStorage", "StorageError"]


class StorageError(Exception):
    """Raised when the local store cannot be read or written."""


class LocalStorage:
    """Key/value store persisted in a SQLite database file.

    The connection is shared between threads and guarded by a lock.
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        """Open (and create if needed) the local store.

        Args:
            db_path: Path to the SQLite database file, or ':memory:' for in-memory
        """
        path_str = str(db_path)
        if path_str != ":memory:":
            Path(path_str).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = path_str
        self._lock = threading.Lock()
        try:
            self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
                path_str, check_same_thread=False
            )
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open local storage at {path_str}: {e}") from e
        logger.info(f"Opened local storage at {path_str}")

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Local storage is closed")
        return self._conn

    def get_item(self, key: str) -> Optional[str]:
        """Get the value stored under a key, or None."""
        with self._lock:
            try:
                row = self._connection().execute(
                    "SELECT value FROM kv WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read '{key}': {e}") from e
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        """Store a value under a key, replacing any previous value."""
        with self._lock:
            try:
                conn = self._connection()
                conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                    (key, value),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to write '{key}': {e}") from e

    def remove_item(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        with self._lock:
            try:
                conn = self._connection()
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to remove '{key}': {e}") from e

    def keys(self) -> List[str]:
        """List all stored keys in sorted order."""
        with self._lock:
            try:
                rows = self._connection().execute(
                    "SELECT key FROM kv ORDER BY key"
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to list keys: {e}") from e
        return [row[0] for row in rows]

    def clear(self) -> None:
        """Remove every key."""
        with self._lock:
            try:
                conn = self._connection()
                conn.execute("DELETE FROM kv")
                conn.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to clear local storage: {e}") from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
