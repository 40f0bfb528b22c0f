"""Command-line interface for the accounts service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from accounts.config import Config, load_config, resolve_config_path
from accounts.database import Database, resolve_database_path
from accounts.errors import ConfigError, NotFoundError, RepositoryError
from accounts.models import User
from accounts.security import MIN_PASSWORD_LENGTH, hash_password
from accounts.users import UserRepository

logger = logging.getLogger("accounts.main")

_DEFAULT_PAGE_SIZE = 50


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    # Shared by the top-level parser and every subcommand so --config may
    # appear on either side of the subcommand name.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=argparse.SUPPRESS,
        help="Path to the YAML configuration file (default: $CONFIG_PATH)",
    )

    parser = argparse.ArgumentParser(description="User accounts administration", parents=[common])
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="show-config")

    subparsers.add_parser("show-config", parents=[common], help="Print the resolved configuration")
    subparsers.add_parser("init-db", parents=[common], help="Create the users table if it is missing")

    create_parser = subparsers.add_parser("create-user", parents=[common], help="Register a new user")
    create_parser.add_argument("email", help="Unique email address for the account")
    create_parser.add_argument("--first-name", default="")
    create_parser.add_argument("--middle-name", default="")
    create_parser.add_argument("--last-name", default="")

    list_parser = subparsers.add_parser("list-users", parents=[common], help="List one page of users")
    list_parser.add_argument("--limit", type=int, default=_DEFAULT_PAGE_SIZE)
    list_parser.add_argument("--offset", type=int, default=0)

    show_parser = subparsers.add_parser("show-user", parents=[common], help="Show a single user")
    show_parser.add_argument("user_id", type=int)

    update_parser = subparsers.add_parser("update-user", parents=[common], help="Update a user's profile")
    update_parser.add_argument("user_id", type=int)
    update_parser.add_argument("--first-name", default=None)
    update_parser.add_argument("--middle-name", default=None)
    update_parser.add_argument("--last-name", default=None)
    update_parser.add_argument("--profile-image-url", default=None)

    for name, help_text in (
        ("delete-user", "Delete a user"),
        ("block", "Block a user"),
        ("unblock", "Unblock a user"),
    ):
        id_parser = subparsers.add_parser(name, parents=[common], help=help_text)
        id_parser.add_argument("user_id", type=int)

    args_list = list(argv) if argv is not None else sys.argv[1:]
    return parser.parse_args(args_list)


def must_load(argv: Sequence[str] | None = None) -> Config:
    """Resolve and load the configuration, exiting the process on failure."""

    path = resolve_config_path(argv)
    try:
        return load_config(path)
    except ConfigError as exc:
        logger.error("failed to load config: %s", exc)
        raise SystemExit(1) from exc


def _open_database(config: Config) -> Database:
    return Database(resolve_database_path(config.storage_path))


def _show_config(config: Config) -> None:
    print(f"env:             {config.env}")
    print(f"storage_path:    {config.storage_path}")
    print(f"grpc.port:       {config.grpc.port}")
    print(f"grpc.timeout:    {config.grpc.timeout}")
    print(f"migrations_path: {config.migrations_path}")
    print(f"token_ttl:       {config.token_ttl}")


def _print_user(user: User) -> None:
    name = " ".join(part for part in (user.first_name, user.middle_name, user.last_name) if part)
    status = "blocked" if user.is_blocked else "active"
    print(f"#{user.id} {user.email} ({name or '<no name>'}) [{status}]")
    print(f"  profile image: {user.profile_image_url or '<none>'}")
    print(f"  created: {user.created_at}  updated: {user.updated_at}")


def _list_users(repository: UserRepository, *, limit: int, offset: int) -> None:
    users = repository.list_users(limit, offset)
    if not users:
        print("No users found.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Email':<32}  {'Blocked':<7}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z") if user.created_at else ""
        blocked = "yes" if user.is_blocked else "no"
        print(f"{user.id:>4}  {user.email:<32}  {blocked:<7}  {created}")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(repository: UserRepository, args: argparse.Namespace) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.")
        return 1

    user = User(
        email=args.email.strip().lower(),
        password_hash=hash_password(password),
        first_name=args.first_name,
        middle_name=args.middle_name,
        last_name=args.last_name,
    )
    repository.create_user(user)
    print(f"Created user #{user.id}: {user.email}")
    return 0


def _update_user(repository: UserRepository, args: argparse.Namespace) -> int:
    user = repository.get_user(args.user_id)
    for field in ("first_name", "middle_name", "last_name", "profile_image_url"):
        value = getattr(args, field)
        if value is not None:
            setattr(user, field, value)
    repository.update_user(user)
    _print_user(user)
    return 0


def _report_affected(affected: int, user_id: int, action: str) -> int:
    if not affected:
        print(f"No user with id {user_id}.")
        return 1
    print(f"User #{user_id} {action}.")
    return 0


def _run_command(repository: UserRepository, args: argparse.Namespace) -> int:
    if args.command == "create-user":
        return _create_user(repository, args)
    if args.command == "list-users":
        _list_users(repository, limit=args.limit, offset=args.offset)
        return 0
    if args.command == "show-user":
        _print_user(repository.get_user(args.user_id))
        return 0
    if args.command == "update-user":
        return _update_user(repository, args)
    if args.command == "delete-user":
        return _report_affected(repository.delete_user(args.user_id), args.user_id, "deleted")
    if args.command == "block":
        return _report_affected(repository.block_user(args.user_id), args.user_id, "blocked")
    if args.command == "unblock":
        return _report_affected(repository.unblock_user(args.user_id), args.user_id, "unblocked")
    raise ValueError(f"Unknown command {args.command!r}")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    config = must_load(argv)

    if args.command == "show-config":
        _show_config(config)
        return 0

    database = _open_database(config)
    if args.command == "init-db":
        database.initialize()
        logger.info("Database initialised at %s", database.path)
        print("Database initialisation complete.")
        return 0

    repository = UserRepository(database)

    try:
        return _run_command(repository, args)
    except NotFoundError as exc:
        print(f"No user with id {exc.user_id}.")
        return 1
    except RepositoryError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
