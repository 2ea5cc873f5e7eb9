"""
Durable backends for the scan store.

Two narrow capabilities:
  - KeyValueStore: string values under string keys (the scan collection, settings).
  - BackupStore: whole records under a fixed key inside one named collection.

SQLite implementations are used by the app; the in-memory ones back tests and
dry runs. All of them raise StorageError on failure.
"""
import json
import logging
import sqlite3
from datetime import datetime, UTC
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple

from .. import config
from ..exceptions import StorageError


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def items(self) -> Iterator[Tuple[str, str]]: ...


class BackupStore(Protocol):
    def put(self, key: str, record: Dict[str, Any]) -> None: ...

    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def clear(self) -> None: ...


def estimate_size(kv: KeyValueStore) -> int:
    """Approximate footprint of the store: key and value lengths summed."""
    return sum(len(key) + len(value) for key, value in kv.items())


class SQLiteKeyValueStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, key: str) -> Optional[str]:
        try:
            cur = self.conn.cursor()
            cur.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cur.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read key {key}: {e}") from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        now_iso = datetime.now(UTC).isoformat()
        try:
            with self.conn:
                self.conn.execute("""
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """, (key, value, now_iso))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write key {key}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove key {key}: {e}") from e

    def items(self) -> Iterator[Tuple[str, str]]:
        try:
            cur = self.conn.cursor()
            cur.execute("SELECT key, value FROM kv_store ORDER BY key")
            rows = cur.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}") from e
        return iter(rows)


class SQLiteBackupStore:
    def __init__(self, conn: sqlite3.Connection, collection: str = config.BACKUP_COLLECTION):
        self.conn = conn
        self.collection = collection

    def put(self, key: str, record: Dict[str, Any]) -> None:
        now_iso = datetime.now(UTC).isoformat()
        try:
            with self.conn:
                self.conn.execute("""
                    INSERT OR REPLACE INTO backup_records (collection, key, payload, created_at)
                    VALUES (?, ?, ?, ?)
                """, (self.collection, key, json.dumps(record), now_iso))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write backup {self.collection}/{key}: {e}") from e
        logging.debug(f"Stored backup record {self.collection}/{key}")

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            cur = self.conn.cursor()
            cur.execute(
                "SELECT payload FROM backup_records WHERE collection = ? AND key = ?",
                (self.collection, key),
            )
            row = cur.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read backup {self.collection}/{key}: {e}") from e
        if not row:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise StorageError(f"Backup {self.collection}/{key} is corrupt: {e}") from e

    def clear(self) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM backup_records WHERE collection = ?", (self.collection,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clear backup collection {self.collection}: {e}") from e


class MemoryKeyValueStore:
    """
    Dict-backed store. With a quota, a write that would push the estimated
    size past it fails the way a full browser/local store does.
    """

    def __init__(self, quota: Optional[int] = None):
        self.data: Dict[str, str] = {}
        self.quota = quota

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota is not None:
            current = self.data.get(key)
            size = estimate_size(self) - (len(key) + len(current) if current is not None else 0)
            if size + len(key) + len(value) > self.quota:
                raise StorageError(f"Quota exceeded writing key {key}")
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(list(self.data.items()))


class MemoryBackupStore:
    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}

    def put(self, key: str, record: Dict[str, Any]) -> None:
        # Detached copy, same as what a serializing backend would hand back
        self.records[key] = json.loads(json.dumps(record))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        record = self.records.get(key)
        return json.loads(json.dumps(record)) if record is not None else None

    def clear(self) -> None:
        self.records.clear()
