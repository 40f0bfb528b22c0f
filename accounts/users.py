"""Persistence for user accounts.

Every method runs exactly one statement on one borrowed connection and
returns. Store failures surface immediately, wrapped in a
:class:`~accounts.errors.RepositoryError` subclass naming the operation; the
driver error stays reachable through ``__cause__``.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
import time
from typing import Callable, List, Optional, Type, TypeVar

from .database import Database, current_timestamp, parse_datetime, serialize_datetime
from .errors import (
    DeleteError,
    NotFoundError,
    OperationCancelledError,
    ReadError,
    RepositoryError,
    WriteError,
)
from .models import User

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Number of SQLite VM instructions between cancellation checks.
_PROGRESS_STEPS = 1000

# Read projections never include password_hash.
_USER_COLUMNS = (
    "id, email, first_name, middle_name, last_name, profile_image_url, "
    "is_blocked, created_at, updated_at"
)


class _Deadline:
    """Caller-supplied cancellation signal and/or timeout for a single call."""

    def __init__(self, cancel: Optional[threading.Event], timeout: Optional[float]) -> None:
        self._cancel = cancel
        self._expires_at = None if timeout is None else time.monotonic() + timeout

    @property
    def active(self) -> bool:
        return self._cancel is not None or self._expires_at is not None

    def expired(self) -> bool:
        if self._cancel is not None and self._cancel.is_set():
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=int(row["id"]),
        email=str(row["email"]),
        first_name=str(row["first_name"]),
        middle_name=str(row["middle_name"]),
        last_name=str(row["last_name"]),
        profile_image_url=str(row["profile_image_url"]),
        is_blocked=bool(row["is_blocked"]),
        created_at=parse_datetime(str(row["created_at"])),
        updated_at=parse_datetime(str(row["updated_at"])),
    )


class UserRepository:
    """CRUD access to the ``users`` table."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def _execute(
        self,
        operation: str,
        error_cls: Type[RepositoryError],
        message: str,
        work: Callable[[sqlite3.Connection], T],
        *,
        cancel: Optional[threading.Event],
        timeout: Optional[float],
    ) -> T:
        deadline = _Deadline(cancel, timeout)
        if deadline.expired():
            raise OperationCancelledError(operation)

        try:
            with self._database.connection() as conn:
                if deadline.active:
                    conn.set_progress_handler(deadline.expired, _PROGRESS_STEPS)
                return work(conn)
        except sqlite3.Error as exc:
            if deadline.expired():
                raise OperationCancelledError(operation, f"{message}: interrupted") from exc
            raise error_cls(operation, f"{message}: {exc}") from exc

    def _decode(self, operation: str, row: sqlite3.Row) -> User:
        try:
            return _row_to_user(row)
        except (KeyError, TypeError, ValueError) as exc:
            raise ReadError(operation, f"failed to decode user row: {exc}") from exc

    def create_user(
        self,
        user: User,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Insert ``user`` and write the store-assigned id and timestamps back into it."""

        def work(conn: sqlite3.Connection) -> sqlite3.Row:
            rows = conn.execute(
                """
                INSERT INTO users (email, password_hash, first_name, middle_name, last_name)
                VALUES (?, ?, ?, ?, ?)
                RETURNING id, created_at, updated_at
                """,
                (
                    user.email,
                    user.password_hash,
                    user.first_name,
                    user.middle_name,
                    user.last_name,
                ),
            ).fetchall()
            return rows[0]

        row = self._execute(
            "create_user", WriteError, "failed to create user", work, cancel=cancel, timeout=timeout
        )
        try:
            user.id = int(row["id"])
            user.created_at = parse_datetime(str(row["created_at"]))
            user.updated_at = parse_datetime(str(row["updated_at"]))
        except (TypeError, ValueError) as exc:
            raise WriteError("create_user", f"failed to read generated fields: {exc}") from exc

        logger.info("Created user %s", user.id)

    def get_user(
        self,
        user_id: int,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> User:
        def work(conn: sqlite3.Connection) -> Optional[sqlite3.Row]:
            return conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()

        row = self._execute(
            "get_user", ReadError, "failed to get user", work, cancel=cancel, timeout=timeout
        )
        if row is None:
            raise NotFoundError("get_user", user_id)
        logger.debug("Fetched user %s", user_id)
        return self._decode("get_user", row)

    def update_user(
        self,
        user: User,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Overwrite the profile fields of ``user`` and stamp ``updated_at``.

        ``email``, ``password_hash`` and ``is_blocked`` are left untouched.
        Returns the number of matched rows; zero means no user has ``user.id``.
        """

        updated_at = current_timestamp()

        def work(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                """
                UPDATE users
                   SET first_name = ?,
                       middle_name = ?,
                       last_name = ?,
                       profile_image_url = ?,
                       updated_at = ?
                 WHERE id = ?
                """,
                (
                    user.first_name,
                    user.middle_name,
                    user.last_name,
                    user.profile_image_url,
                    serialize_datetime(updated_at),
                    user.id,
                ),
            )
            return cursor.rowcount

        affected = self._execute(
            "update_user", WriteError, "failed to update user", work, cancel=cancel, timeout=timeout
        )
        if affected:
            user.updated_at = updated_at
        else:
            logger.warning("update_user matched no rows for user %s", user.id)
        return affected

    def delete_user(
        self,
        user_id: int,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> int:
        def work(conn: sqlite3.Connection) -> int:
            return conn.execute("DELETE FROM users WHERE id = ?", (user_id,)).rowcount

        affected = self._execute(
            "delete_user", DeleteError, "failed to delete user", work, cancel=cancel, timeout=timeout
        )
        if affected:
            logger.info("Deleted user %s", user_id)
        else:
            logger.warning("delete_user matched no rows for user %s", user_id)
        return affected

    def list_users(
        self,
        limit: int,
        offset: int,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> List[User]:
        """Return one page of users ordered by ascending id.

        ``limit`` and ``offset`` are handed to the store as-is; SQLite treats a
        negative limit as "no limit".
        """

        def work(conn: sqlite3.Connection) -> List[sqlite3.Row]:
            return conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users ORDER BY id LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()

        rows = self._execute(
            "list_users", ReadError, "failed to list users", work, cancel=cancel, timeout=timeout
        )
        users = [self._decode("list_users", row) for row in rows]
        logger.debug("Listed %d user(s) (limit=%s, offset=%s)", len(users), limit, offset)
        return users

    def _set_blocked(
        self,
        operation: str,
        user_id: int,
        blocked: bool,
        cancel: Optional[threading.Event],
        timeout: Optional[float],
    ) -> int:
        # Block state changes leave updated_at alone.
        def work(conn: sqlite3.Connection) -> int:
            return conn.execute(
                "UPDATE users SET is_blocked = ? WHERE id = ?",
                (int(blocked), user_id),
            ).rowcount

        verb = "block" if blocked else "unblock"
        affected = self._execute(
            operation, WriteError, f"failed to {verb} user", work, cancel=cancel, timeout=timeout
        )
        if affected:
            logger.info("User %s %sed", user_id, verb)
        else:
            logger.warning("%s matched no rows for user %s", operation, user_id)
        return affected

    def block_user(
        self,
        user_id: int,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> int:
        return self._set_blocked("block_user", user_id, True, cancel, timeout)

    def unblock_user(
        self,
        user_id: int,
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> int:
        return self._set_blocked("unblock_user", user_id, False, cancel, timeout)


__all__ = ["UserRepository"]
