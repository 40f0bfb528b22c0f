"""SQLite-backed connection source for the accounts store."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

logger = logging.getLogger(__name__)

# Store-side timestamp default. SQLite evaluates 'now' once per statement, so
# both columns of a fresh row carry the same value.
_NOW_SQL = "(strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))"


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(storage_path: Optional[str]) -> Path:
    """Resolve the on-disk path for the accounts database."""

    if not storage_path:
        raise ValueError("storage_path must not be empty")
    return Path(storage_path).expanduser().resolve(strict=False)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


class Database:
    """Hands out one short-lived SQLite connection per operation."""

    def __init__(self, path: Union[str, Path], *, timeout: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout = timeout
        _ensure_directory(self._path)

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._timeout, check_same_thread=False)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection; commit on success, roll back on error, always close."""

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the ``users`` table if it does not already exist."""

        with self.connection() as conn:
            conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    first_name TEXT NOT NULL DEFAULT '',
                    middle_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    profile_image_url TEXT NOT NULL DEFAULT '',
                    is_blocked INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL DEFAULT {_NOW_SQL},
                    updated_at TEXT NOT NULL DEFAULT {_NOW_SQL}
                );
                """
            )
        logger.debug("Ensured users schema in %s", self._path)


__all__ = [
    "Database",
    "current_timestamp",
    "parse_datetime",
    "resolve_database_path",
    "serialize_datetime",
]
