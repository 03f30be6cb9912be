"""
Durable key-value storage.

Backends share the KeyValueStore protocol. Writes are atomic: the file
backend swaps in a fully written temp file, the SQLite backend commits one
transaction. Readers never observe a half-written value.
"""

import os
import sqlite3
import tempfile
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

import structlog

from vitals_engine.config import StorageConfig
from vitals_engine.domain.errors import PersistenceError

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    """String values keyed by string. Failures raise PersistenceError."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, used in tests and when durability is not wanted."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """One file per key under a directory."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read {key!r}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                    tmp.write(value)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to delete {key!r}: {e}") from e


class SQLiteStore:
    """Single-table store in a local SQLite database."""

    def __init__(self, db_path: str | os.PathLike[str]) -> None:
        self.db_path = str(db_path)
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS kv_store (
                            key TEXT PRIMARY KEY,
                            value TEXT NOT NULL,
                            updated_utc TEXT NOT NULL DEFAULT (datetime('now'))
                        );
                        """
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to initialise {self.db_path}: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def get(self, key: str) -> str | None:
        try:
            conn = self._connect()
            try:
                row = conn.execute("SELECT value FROM kv_store WHERE key = ?;", (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read {key!r}: {e}") from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute(
                        "INSERT INTO kv_store (key, value, updated_utc) "
                        "VALUES (?, ?, datetime('now')) "
                        "ON CONFLICT(key) DO UPDATE SET "
                        "value = excluded.value, updated_utc = excluded.updated_utc;",
                        (key, value),
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute("DELETE FROM kv_store WHERE key = ?;", (key,))
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete {key!r}: {e}") from e


def create_store(config: StorageConfig) -> KeyValueStore:
    """Build the configured backend."""
    if config.backend == "memory":
        store: KeyValueStore = MemoryStore()
    elif config.backend == "sqlite":
        path = Path(config.path)
        if path.suffix == "":
            path.mkdir(parents=True, exist_ok=True)
            path = path / "vitals.db"
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
        store = SQLiteStore(path)
    else:
        store = JsonFileStore(config.path)

    logger.info("storage_initialized", backend=config.backend, path=config.path)
    return store
