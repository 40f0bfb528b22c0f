"""Exception hierarchy shared by the configuration loader and the user store."""

from __future__ import annotations

from typing import Optional


class AccountsError(RuntimeError):
    """Base class for every error raised by the accounts package."""


class ConfigError(AccountsError):
    """Raised when the service configuration cannot be produced."""


class ConfigPathEmptyError(ConfigError):
    def __init__(self) -> None:
        super().__init__("config path is empty")


class ConfigFileNotFoundError(ConfigError):
    def __init__(self, path: str) -> None:
        super().__init__(f"config file does not exist: {path}")
        self.path = path


class ConfigParseError(ConfigError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"failed to read config {path}: {reason}")
        self.path = path


class ConfigValidationError(ConfigError):
    def __init__(self, field: str) -> None:
        super().__init__(f"invalid config: {field} is required")
        self.field = field


class RepositoryError(AccountsError):
    """A store operation failed; the driver error is available as ``__cause__``."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class NotFoundError(RepositoryError):
    def __init__(self, operation: str, user_id: int) -> None:
        super().__init__(operation, f"user {user_id} not found")
        self.user_id = user_id


class ReadError(RepositoryError):
    pass


class WriteError(RepositoryError):
    pass


class DeleteError(RepositoryError):
    pass


class OperationCancelledError(RepositoryError):
    def __init__(self, operation: str, reason: Optional[str] = None) -> None:
        super().__init__(operation, reason or "operation cancelled")


__all__ = [
    "AccountsError",
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigParseError",
    "ConfigPathEmptyError",
    "ConfigValidationError",
    "DeleteError",
    "NotFoundError",
    "OperationCancelledError",
    "ReadError",
    "RepositoryError",
    "WriteError",
]
