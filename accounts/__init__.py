"""User account persistence and configuration loading."""

from __future__ import annotations

from .config import Config, GRPCConfig, load_config, resolve_config_path
from .database import Database, resolve_database_path
from .models import User
from .users import UserRepository

__all__ = [
    "Config",
    "Database",
    "GRPCConfig",
    "User",
    "UserRepository",
    "load_config",
    "resolve_config_path",
    "resolve_database_path",
]
