"""Configuration loading for the accounts service.

A base YAML file is read first. When it names an environment, a sibling
``config.<env>.yaml`` is overlaid on top of it field by field before the
result is validated.
"""
from __future__ import annotations

import argparse
import logging
import os
import re
import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union

import yaml

from .errors import (
    ConfigFileNotFoundError,
    ConfigParseError,
    ConfigPathEmptyError,
    ConfigValidationError,
)

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "CONFIG_PATH"
DEFAULT_ENV = "local"
DEFAULT_MIGRATIONS_PATH = "./migrations"
DEFAULT_TOKEN_TTL = timedelta(hours=1)

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"(?:{_DURATION_PART})+")
_DURATION_PART_RE = re.compile(_DURATION_PART)


def parse_duration(value: Any) -> timedelta:
    """Parse a Go-style duration such as ``"1h30m"`` or ``"250ms"``.

    Bare numbers are interpreted as seconds.
    """

    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        seconds = _parse_duration_text(value)
    else:
        raise ValueError(f"invalid duration {value!r}")

    # timedelta raises OverflowError past ~999999999 days and ValueError for NaN.
    try:
        return timedelta(seconds=seconds)
    except (OverflowError, ValueError) as exc:
        raise ValueError(f"invalid duration {value!r}") from exc


def _parse_duration_text(value: str) -> float:
    text = value.strip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0.0
    if not _DURATION_RE.fullmatch(text):
        raise ValueError(f"invalid duration {value!r}")

    return sign * sum(
        float(amount) * _DURATION_UNITS[unit]
        for amount, unit in _DURATION_PART_RE.findall(text)
    )


def _to_str(value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    return str(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    if isinstance(value, (int, str)):
        return int(value)
    raise ValueError(f"expected an integer, got {type(value).__name__}")


# Leaf fields in YAML key order; dotted keys address nested mappings.
_FIELDS: Dict[str, Callable[[Any], Any]] = {
    "env": _to_str,
    "storage_path": _to_str,
    "grpc.port": _to_int,
    "grpc.timeout": parse_duration,
    "migrations_path": _to_str,
    "token_ttl": parse_duration,
}


@dataclass(frozen=True)
class GRPCConfig:
    port: int
    timeout: timedelta


@dataclass(frozen=True)
class Config:
    """Resolved, validated service configuration."""

    env: str
    storage_path: str
    grpc: GRPCConfig
    migrations_path: str = DEFAULT_MIGRATIONS_PATH
    token_ttl: timedelta = DEFAULT_TOKEN_TTL

    @staticmethod
    def from_fields(values: Mapping[str, Any]) -> "Config":
        """Build a :class:`Config` from flattened field values, applying defaults."""

        return Config(
            env=values.get("env", DEFAULT_ENV),
            storage_path=values.get("storage_path", ""),
            grpc=GRPCConfig(
                port=values.get("grpc.port", 0),
                timeout=values.get("grpc.timeout", timedelta(0)),
            ),
            migrations_path=values.get("migrations_path", DEFAULT_MIGRATIONS_PATH),
            token_ttl=values.get("token_ttl", DEFAULT_TOKEN_TTL),
        )

    def validate(self) -> None:
        if not self.storage_path:
            raise ConfigValidationError("storage_path")
        if not self.grpc.port:
            raise ConfigValidationError("grpc.port")
        if not self.grpc.timeout:
            raise ConfigValidationError("grpc.timeout")


def resolve_config_path(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Return the config path from ``--config``, then ``$CONFIG_PATH``, else ``""``."""

    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--config", default="")
    args, _ = parser.parse_known_args(list(argv) if argv is not None else sys.argv[1:])
    if args.config:
        return args.config

    env = os.environ if environ is None else environ
    return env.get(CONFIG_PATH_ENV, "")


def _lookup(raw: Mapping[str, Any], key: str) -> Any:
    node: Any = raw
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _read_fields(path: Path) -> Dict[str, Any]:
    """Read a YAML file and return the known fields it sets, converted."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigParseError(str(path), str(exc)) from exc
    except UnicodeDecodeError as exc:
        raise ConfigParseError(str(path), f"not valid UTF-8: {exc.reason}") from exc
    except OSError as exc:
        raise ConfigParseError(str(path), exc.strerror or str(exc)) from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigParseError(str(path), "top-level document must be a mapping")
    if raw.get("grpc") is not None and not isinstance(raw["grpc"], dict):
        raise ConfigParseError(str(path), "grpc must be a mapping")

    values: Dict[str, Any] = {}
    for key, convert in _FIELDS.items():
        value = _lookup(raw, key)
        if value is None:
            continue
        try:
            values[key] = convert(value)
        except (TypeError, ValueError) as exc:
            raise ConfigParseError(str(path), f"{key}: {exc}") from exc
    return values


def overlay_path_for(base_path: Path, env: str) -> Path:
    return base_path.parent / f"config.{env}.yaml"


def load_config(path: Union[str, Path]) -> Config:
    """Load, overlay and validate the configuration stored at ``path``."""

    if not str(path):
        raise ConfigPathEmptyError()

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigFileNotFoundError(str(path))

    values = _read_fields(config_path)
    env = values.get("env", DEFAULT_ENV)

    if env:
        overlay = overlay_path_for(config_path, env)
        if overlay.is_file():
            overrides = _read_fields(overlay)
            # Zero values in the overlay never clear a base value.
            values.update({key: value for key, value in overrides.items() if value})
            logger.info("Applied %s overlay from %s", env, overlay)
        else:
            logger.debug("No %s overlay at %s", env, overlay)

    config = Config.from_fields(values)
    config.validate()
    logger.info("Loaded configuration from %s (env=%s)", config_path, config.env)
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "Config",
    "GRPCConfig",
    "load_config",
    "overlay_path_for",
    "parse_duration",
    "resolve_config_path",
]
