"""SQLite backed key/value slots for the nexus state snapshots."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterator, Optional

from .config import APP_DIR

DB_PATH = APP_DIR / "nexus.db"
SCHEMA_VERSION = 1


class StorageError(RuntimeError):
    """Raised when something goes wrong while accessing the storage."""


class Storage:
    """Durable local storage holding one serialized document per slot."""

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path
        self._ensure_initialised()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open storage at {self.db_path}: {exc}") from exc

    def _ensure_initialised(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS slots (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur = conn.execute("SELECT value FROM metadata WHERE key = ?", ("schema_version",))
            row = cur.fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO metadata(key, value) VALUES(?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )
            elif int(row[0]) > SCHEMA_VERSION:
                raise StorageError(
                    f"{self.db_path} was written by a newer nexus (schema {row[0]}); please upgrade."
                )

    def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            cur = conn.execute("SELECT value FROM slots WHERE key = ?", (key,))
            row = cur.fetchone()
        return None if row is None else row[0]

    def set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO slots(key, value) VALUES(?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def keys(self) -> Iterator[str]:
        with self._connect() as conn:
            for (key,) in conn.execute("SELECT key FROM slots ORDER BY key"):
                yield key

    def clear(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM slots")
