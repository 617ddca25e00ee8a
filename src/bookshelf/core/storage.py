"""Persistence backends for the serialized book collection."""

from __future__ import annotations

import os
import sqlite3
import time
from pathlib import Path
from typing import Protocol

import structlog

from .errors import StorageUnavailableError

log = structlog.get_logger()


class Storage(Protocol):
    def read(self, key: str) -> str | None: ...

    def write(self, key: str, value: str) -> None: ...


class MemoryStorage:
    """Keep slots in a dict. Nothing survives the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.slots: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> str | None:
        return self.slots.get(key)

    def write(self, key: str, value: str) -> None:
        self.slots[key] = value


class SQLiteStorage:
    """Store text slots in a local SQLite database, one row per key."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            data_dir = Path(os.environ.get("DATA_DIR", ".data"))
            data_dir.mkdir(parents=True, exist_ok=True)
            db_path = data_dir / "bookshelf.db"

        self.db_path = db_path
        try:
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.execute(
                """CREATE TABLE IF NOT EXISTS slots (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at REAL
                )"""
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open {db_path}: {e}") from e

    def read(self, key: str) -> str | None:
        try:
            row = self._conn.execute(
                "SELECT value FROM slots WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailableError(str(e)) from e
        return row[0] if row else None

    def write(self, key: str, value: str) -> None:
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO slots (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, time.time()),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailableError(str(e)) from e
        log.debug("slot_written", key=key, size=len(value))

    def close(self) -> None:
        self._conn.close()
