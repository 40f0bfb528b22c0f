from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import pytest

from accounts.database import Database
from accounts.errors import (
    DeleteError,
    NotFoundError,
    OperationCancelledError,
    ReadError,
    RepositoryError,
    WriteError,
)
from accounts.models import User
from accounts.users import UserRepository


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "accounts.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def repository(database: Database) -> UserRepository:
    return UserRepository(database)


def _new_user(email: str = "ada@example.com") -> User:
    return User(
        email=email,
        password_hash="pbkdf2_sha256$stub",
        first_name="Ada",
        middle_name="King",
        last_name="Lovelace",
    )


def test_create_then_get_round_trip(repository: UserRepository) -> None:
    user = _new_user()
    repository.create_user(user)

    assert user.id is not None
    assert user.created_at is not None
    assert user.created_at == user.updated_at

    fetched = repository.get_user(user.id)
    assert fetched.email == "ada@example.com"
    assert (fetched.first_name, fetched.middle_name, fetched.last_name) == ("Ada", "King", "Lovelace")
    assert fetched.created_at == fetched.updated_at == user.created_at
    assert fetched.is_blocked is False


def test_get_never_returns_password_hash(repository: UserRepository) -> None:
    user = _new_user()
    repository.create_user(user)

    assert repository.get_user(user.id).password_hash == ""
    assert all(item.password_hash == "" for item in repository.list_users(10, 0))


def test_create_assigns_distinct_ids(repository: UserRepository) -> None:
    first, second = _new_user("a@example.com"), _new_user("b@example.com")
    repository.create_user(first)
    repository.create_user(second)
    assert first.id != second.id


def test_create_duplicate_email_is_write_error(repository: UserRepository) -> None:
    repository.create_user(_new_user())

    with pytest.raises(WriteError) as excinfo:
        repository.create_user(_new_user())

    assert excinfo.value.operation == "create_user"
    assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)


def test_get_unknown_user_is_not_found(repository: UserRepository) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        repository.get_user(404)
    assert excinfo.value.user_id == 404


def test_update_touches_profile_fields_only(repository: UserRepository) -> None:
    user = _new_user()
    repository.create_user(user)
    repository.block_user(user.id)
    created_at = user.created_at

    changes = User(
        id=user.id,
        email="other@example.com",
        first_name="Augusta",
        middle_name="",
        last_name="Byron",
        profile_image_url="https://example.com/ada.png",
        is_blocked=False,
    )
    assert repository.update_user(changes) == 1

    fetched = repository.get_user(user.id)
    assert fetched.first_name == "Augusta"
    assert fetched.middle_name == ""
    assert fetched.last_name == "Byron"
    assert fetched.profile_image_url == "https://example.com/ada.png"
    assert fetched.email == "ada@example.com"
    assert fetched.is_blocked is True
    assert fetched.created_at == created_at
    assert fetched.updated_at >= created_at
    assert fetched.updated_at == changes.updated_at


def test_update_unknown_user_reports_zero_rows(repository: UserRepository) -> None:
    assert repository.update_user(User(id=999, first_name="Nobody")) == 0


def test_delete_user(repository: UserRepository) -> None:
    user = _new_user()
    repository.create_user(user)

    assert repository.delete_user(user.id) == 1
    with pytest.raises(NotFoundError):
        repository.get_user(user.id)
    assert repository.delete_user(user.id) == 0


def test_block_and_unblock(repository: UserRepository) -> None:
    user = _new_user()
    repository.create_user(user)

    assert repository.block_user(user.id) == 1
    blocked = repository.get_user(user.id)
    assert blocked.is_blocked is True
    assert blocked.updated_at == user.updated_at

    assert repository.unblock_user(user.id) == 1
    assert repository.get_user(user.id).is_blocked is False


def test_block_unknown_user_reports_zero_rows(repository: UserRepository) -> None:
    assert repository.block_user(12345) == 0
    assert repository.unblock_user(12345) == 0


def test_list_users_paginates_in_id_order(repository: UserRepository) -> None:
    created = []
    for index in range(5):
        user = _new_user(f"user{index}@example.com")
        repository.create_user(user)
        created.append(user.id)

    first_page = repository.list_users(2, 0)
    assert [user.id for user in first_page] == created[:2]

    last_page = repository.list_users(2, 4)
    assert [user.id for user in last_page] == created[4:]

    assert repository.list_users(10, 10) == []
    assert len(repository.list_users(-1, 0)) == 5


def test_list_users_fails_whole_call_on_bad_row(repository: UserRepository, database: Database) -> None:
    repository.create_user(_new_user("good@example.com"))
    with database.connection() as conn:
        conn.execute(
            "INSERT INTO users (email, password_hash, created_at) VALUES (?, ?, ?)",
            ("bad@example.com", "x", "not-a-timestamp"),
        )

    with pytest.raises(ReadError) as excinfo:
        repository.list_users(10, 0)
    assert excinfo.value.operation == "list_users"


def test_store_failure_is_wrapped(tmp_path: Path) -> None:
    # Opening a directory as a database fails when the connection is borrowed.
    repository = UserRepository(Database(tmp_path))

    with pytest.raises(ReadError) as excinfo:
        repository.get_user(1)
    assert isinstance(excinfo.value.__cause__, sqlite3.Error)


def test_missing_table_is_read_error(tmp_path: Path) -> None:
    repository = UserRepository(Database(tmp_path / "empty.sqlite3"))

    with pytest.raises(ReadError):
        repository.list_users(1, 0)


def test_cancelled_before_start(repository: UserRepository) -> None:
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelledError) as excinfo:
        repository.create_user(_new_user(), cancel=cancel)

    assert excinfo.value.operation == "create_user"
    assert repository.list_users(10, 0) == []


def test_expired_timeout_fails_promptly(repository: UserRepository) -> None:
    with pytest.raises(OperationCancelledError):
        repository.list_users(10, 0, timeout=0)


def test_unset_cancel_event_does_not_interfere(repository: UserRepository) -> None:
    user = _new_user()
    repository.create_user(user, cancel=threading.Event(), timeout=30)
    assert repository.get_user(user.id, cancel=threading.Event(), timeout=30).id == user.id


def test_cancelled_is_a_repository_error(repository: UserRepository) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(RepositoryError):
        repository.delete_user(1, cancel=cancel)


def _seed_users(database: Database, count: int) -> None:
    with database.connection() as conn:
        conn.execute(
            """
            INSERT INTO users (email, password_hash)
            WITH RECURSIVE seq(n) AS (SELECT 1 UNION ALL SELECT n + 1 FROM seq WHERE n < ?)
            SELECT 'user' || n || '@example.com', 'x' FROM seq
            """,
            (count,),
        )


class _SetAfterFirstCheck(threading.Event):
    """Reports unset on the first check and set on every later one."""

    def __init__(self) -> None:
        super().__init__()
        self.checks = 0

    def is_set(self) -> bool:
        self.checks += 1
        return self.checks > 1


def test_cancel_interrupts_running_statement(repository: UserRepository, database: Database) -> None:
    _seed_users(database, 5000)
    cancel = _SetAfterFirstCheck()

    with pytest.raises(OperationCancelledError) as excinfo:
        repository.list_users(-1, 0, cancel=cancel)

    # Interrupted by SQLite mid-statement rather than by the up-front check.
    assert isinstance(excinfo.value.__cause__, sqlite3.OperationalError)
    assert cancel.checks > 1


def test_cancel_from_another_thread(repository: UserRepository, database: Database) -> None:
    _seed_users(database, 200_000)
    cancel = threading.Event()
    timer = threading.Timer(0.001, cancel.set)
    timer.start()
    try:
        with pytest.raises(OperationCancelledError):
            repository.list_users(-1, 0, cancel=cancel)
    finally:
        timer.cancel()


def test_delete_store_failure_is_delete_error(tmp_path: Path) -> None:
    repository = UserRepository(Database(tmp_path))

    with pytest.raises(DeleteError) as excinfo:
        repository.delete_user(1)
    assert excinfo.value.operation == "delete_user"
    assert isinstance(excinfo.value.__cause__, sqlite3.Error)
