"""Configuration loading and validation.

Reads ``contactbook.toml`` from a config directory, resolves ``${VAR}``
references from the environment, and returns a validated
:class:`ContactBookConfig` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from contactbook.contacts.models import SortOrientation
from contactbook.contacts.query import OrGuard
from contactbook.core.logging import configure_logging
from contactbook.db import DEFAULT_SCHEMA_PREFIX

CONFIG_FILENAME = "contactbook.toml"

# ${VAR_NAME} with an alphanumeric or underscore name
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_SCHEMA_PREFIX_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [contactbook.logging]."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class DatabaseConfig:
    """Database configuration from [contactbook.db]."""

    name: str = "contactbook"
    schema_prefix: str = DEFAULT_SCHEMA_PREFIX
    min_pool_size: int = 2
    max_pool_size: int = 10


@dataclass
class SearchConfig:
    """Search behaviour from [contactbook.search]."""

    or_guard: OrGuard = OrGuard.LEGACY
    default_sort: SortOrientation = SortOrientation.ASC


@dataclass
class ContactBookConfig:
    """Parsed and validated configuration."""

    name: str
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaves are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s*, reporting every missing one."""
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)
    if missing:
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {', '.join(missing)} "
            f"(original: {s!r})"
        )
    return result


def _positive_int(section: dict, key: str, default: int, path: str) -> int:
    try:
        value = int(section.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.{key}: {section.get(key)!r}") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {value!r}. Must be a positive integer.")
    return value


def _parse_db(section: dict[str, Any], name: str) -> DatabaseConfig:
    db_name = str(section.get("name", name)).strip()
    if not db_name:
        raise ConfigError("contactbook.db.name must be a non-empty string")
    prefix = str(section.get("schema_prefix", DEFAULT_SCHEMA_PREFIX))
    if _SCHEMA_PREFIX_PATTERN.fullmatch(prefix) is None:
        raise ConfigError(
            f"Invalid contactbook.db.schema_prefix: {prefix!r}. "
            "Expected lower-case letters, digits and underscores."
        )
    min_size = _positive_int(section, "min_pool_size", 2, "contactbook.db")
    max_size = _positive_int(section, "max_pool_size", 10, "contactbook.db")
    if min_size > max_size:
        raise ConfigError("contactbook.db.min_pool_size must not exceed max_pool_size")
    return DatabaseConfig(
        name=db_name, schema_prefix=prefix, min_pool_size=min_size, max_pool_size=max_size
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid contactbook.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(
        level=str(section.get("level", "INFO")).upper(),
        format=log_format,
        log_root=section.get("log_root"),
    )


def _parse_search(section: dict[str, Any]) -> SearchConfig:
    raw_guard = str(section.get("or_guard", OrGuard.LEGACY)).lower()
    raw_sort = str(section.get("default_sort", SortOrientation.ASC)).lower()
    try:
        or_guard = OrGuard(raw_guard)
    except ValueError as exc:
        raise ConfigError(
            f"Invalid contactbook.search.or_guard: {raw_guard!r}. Expected 'legacy' or 'strict'."
        ) from exc
    try:
        default_sort = SortOrientation(raw_sort)
    except ValueError as exc:
        raise ConfigError(
            f"Invalid contactbook.search.default_sort: {raw_sort!r}. Expected 'asc' or 'desc'."
        ) from exc
    return SearchConfig(or_guard=or_guard, default_sort=default_sort)


def load_config(config_dir: Path) -> ContactBookConfig:
    """Load and validate ``contactbook.toml`` from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    toml_path = config_dir / CONFIG_FILENAME
    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)

    section = data.get("contactbook")
    if not isinstance(section, dict):
        raise ConfigError("Missing [contactbook] section in config")
    name = section.get("name")
    if not name:
        raise ConfigError("Missing required field: contactbook.name")

    return ContactBookConfig(
        name=str(name),
        db=_parse_db(section.get("db", {}), str(name)),
        logging=_parse_logging(section.get("logging", {})),
        search=_parse_search(section.get("search", {})),
    )


def apply_logging_config(config: ContactBookConfig) -> None:
    """Install structured logging as described by ``[contactbook.logging]``."""
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        service_name=config.name,
    )
