"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pairview.core.exceptions import ConfigurationInvalid
from pairview.core.models import CsvFormat, PairConfig, ProviderKind, ScheduleConfig


class ProviderConfig(BaseModel):
    """Which data provider to use and how to reach it."""

    model_config = ConfigDict(frozen=True)

    kind: ProviderKind = ProviderKind.FILE
    root: str = "MarketData/"
    csv: CsvFormat = CsvFormat()


class StorageConfig(BaseModel):
    """Relational store configuration.

    ``connection`` is an opaque descriptor handed to the store backend. For
    the bundled SQLite backend it is a database path or ``file:`` URI.
    """

    model_config = ConfigDict(frozen=True)

    connection: str = "./data/pairview.db"

    @field_validator("connection")
    @classmethod
    def connection_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("storage connection must not be empty")
        return v


class AppConfig(BaseModel):
    """Root configuration for the entire pairview system."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderConfig = ProviderConfig()
    storage: StorageConfig = StorageConfig()
    pair: PairConfig = PairConfig()
    schedule: ScheduleConfig = ScheduleConfig()
    load_values_count: int = Field(default=500, ge=5)


def require_connection(connection: str | None) -> str:
    """Return ``connection`` or raise ConfigurationInvalid if it is blank."""
    if connection is None or not connection.strip():
        raise ConfigurationInvalid(
            "Storage connection is empty; no server/database selected",
            context={"field": "storage.connection", "value": connection},
        )
    return connection


ENV_PREFIX = "PAIRVIEW_"
CONFIG_ENV_VAR = "PAIRVIEW_CONFIG"
DEFAULT_CONFIG_FILES = ("pairview.yml", "pairview.yaml")


def load_config(
    config_path: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Build the AppConfig from defaults, a YAML file and the environment.

    Later layers win: built-in defaults, then the YAML file, then
    ``PAIRVIEW_*`` variables. A double underscore descends one level, so
    ``PAIRVIEW_PROVIDER__CSV__SEPARATOR=";"`` sets ``provider.csv.separator``.

    The YAML file is ``config_path`` if given, else ``$PAIRVIEW_CONFIG``, else
    ``pairview.yml``/``pairview.yaml`` in the working directory if present.
    Any failure surfaces as ConfigurationInvalid.
    """
    environ = os.environ if environ is None else environ
    try:
        settings: dict[str, Any] = {}
        path = _find_config_file(config_path, environ)
        if path is not None:
            settings = _read_yaml(path)
        _overlay(settings, _env_overrides(environ))
        return AppConfig.model_validate(settings)
    except ConfigurationInvalid:
        raise
    except Exception as e:
        raise ConfigurationInvalid(str(e), context={"source": "load_config"}) from e


def _find_config_file(explicit: str | None, environ: Mapping[str, str]) -> Path | None:
    for value, origin in ((explicit, "config_path"), (environ.get(CONFIG_ENV_VAR), CONFIG_ENV_VAR)):
        if not value:
            continue
        path = Path(value)
        if not path.is_file():
            raise ConfigurationInvalid(
                f"Config file not found: {value} (from {origin})",
                context={"field": origin, "value": value},
            )
        return path
    return next((Path(name) for name in DEFAULT_CONFIG_FILES if Path(name).is_file()), None)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationInvalid(
            f"Failed to parse YAML config {path}: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationInvalid(
            f"YAML config must be a mapping, got {type(data).__name__}",
            context={"field": "config_file", "value": str(path)},
        )
    return data


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Nested settings from ``PAIRVIEW_*`` variables, values typed by YAML rules."""
    overrides: dict[str, Any] = {}
    for key, raw in environ.items():
        if not key.startswith(ENV_PREFIX) or key == CONFIG_ENV_VAR:
            continue
        *parents, leaf = key[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = _env_value(raw)
    return overrides


def _env_value(raw: str) -> str | int | float | bool:
    # Only scalars are typed; separators such as "|" or ":" stay literal.
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    return value if isinstance(value, (bool, int, float)) else raw


def _overlay(target: dict[str, Any], overrides: dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            target[key] = dict(target[key])
            _overlay(target[key], value)
        else:
            target[key] = value
