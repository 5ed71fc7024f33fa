from __future__ import annotations

import copy
import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from .clock import utc_now_iso

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DB_PATH_ENV = "SUPERMIND_DB_PATH"


class PersistenceError(RuntimeError):
    """A storage read or write failed."""


class KeyValueStore(Protocol):
    def load(self, key: str, default: Any = None) -> Any: ...
    def save(self, key: str, value: Any) -> None: ...
    def remove(self, key: str) -> None: ...
    def keys(self) -> list[str]: ...


class MemoryStore:
    """Dict-backed store. Values are deep-copied in and out like a serialising store."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def load(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def save(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".supermind_trainer.sqlite3"


def open_db(path: Path | str) -> sqlite3.Connection:
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteStore:
    """Key/value store persisted in a single sqlite table with JSON values."""

    def __init__(self, path: Path | str) -> None:
        self._path = path
        self._conn: sqlite3.Connection | None = open_db(path)

    @classmethod
    def open_default(cls) -> "SqliteStore":
        return cls(default_db_path())

    @property
    def path(self) -> Path | str:
        return self._path

    def load(self, key: str, default: Any = None) -> Any:
        conn = self._require_conn()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to read {key!r}") from exc
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except ValueError:
            logger.warning("discarding corrupt value stored under %r", key)
            return default

    def save(self, key: str, value: Any) -> None:
        conn = self._require_conn()
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"value for {key!r} is not JSON serialisable") from exc
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO kv(key, value, updated_at_utc) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                   updated_at_utc = excluded.updated_at_utc
                    """,
                    (key, payload, utc_now_iso()),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to write {key!r}") from exc

    def remove(self, key: str) -> None:
        conn = self._require_conn()
        try:
            with conn:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to remove {key!r}") from exc

    def keys(self) -> list[str]:
        conn = self._require_conn()
        try:
            return [str(r[0]) for r in conn.execute("SELECT key FROM kv ORDER BY key")]
        except sqlite3.Error as exc:
            raise PersistenceError("failed to list keys") from exc

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("store is closed")
        return self._conn
