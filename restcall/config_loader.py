"""Config Loader - Process-wide settings and YAML configuration files.

Holds the default Settings context shared by every Client that is not given
its own, the precedence resolver used for base URIs and timeouts, and the
YAML loader with ${ENV_VAR} substitution.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from restcall.errors import ConfigurationError
from restcall.models import ClientConfigFile, Settings

_UNSET: Any = object()

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

_default_settings = Settings()


def first_present(*values: Any) -> Any:
    """Return the first value that is not None, or None.

    Callers pass values in precedence order, e.g.
    ``first_present(request.read_timeout, settings.read_timeout)``.
    """
    for value in values:
        if value is not None:
            return value
    return None


def get_settings() -> Settings:
    """Return the process-wide Settings instance."""
    return _default_settings


def reset_settings() -> Settings:
    """Restore built-in defaults on the process-wide Settings (in place)."""
    fresh = Settings()
    _default_settings.headers = fresh.headers
    _default_settings.base_uri = fresh.base_uri
    _default_settings.connect_timeout = fresh.connect_timeout
    _default_settings.read_timeout = fresh.read_timeout
    _default_settings.json_indent = fresh.json_indent
    return _default_settings


def set_global_header(name: str, value: Any) -> None:
    """Set a header sent by every client using the process-wide settings. None clears it."""
    _default_settings.set_header(name, value)


def configure(
    *,
    headers: dict[str, Any] | None = None,
    base_uri: str | None = _UNSET,
    connect_timeout: float = _UNSET,
    read_timeout: float = _UNSET,
    json_indent: int = _UNSET,
    settings: Settings | None = None,
) -> Settings:
    """Update process-wide settings (or the given Settings) in place.

    Only arguments that are passed are changed. ``base_uri=None`` clears the
    base URI; header values of None clear that header.

    Raises:
        ConfigurationError: If a value fails validation (e.g. timeout <= 0).
    """
    target = settings if settings is not None else _default_settings
    try:
        if base_uri is not _UNSET:
            target.base_uri = base_uri
        if connect_timeout is not _UNSET:
            target.connect_timeout = connect_timeout
        if read_timeout is not _UNSET:
            target.read_timeout = read_timeout
        if json_indent is not _UNSET:
            target.json_indent = json_indent
    except ValidationError as e:
        raise ConfigurationError(f"Invalid setting: {e}", cause=e) from e

    for name, value in (headers or {}).items():
        target.set_header(name, value)
    return target


def load_client_config(config_path: Path) -> ClientConfigFile:
    """Load a client configuration file from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}", cause=e) from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return ClientConfigFile.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config structure: {e}", cause=e) from e


def settings_from_config(config: ClientConfigFile) -> Settings:
    """Build a standalone Settings from a loaded config file."""
    settings = Settings(base_uri=config.base_uri, headers=dict(config.headers))
    return configure(
        connect_timeout=first_present(config.connect_timeout, settings.connect_timeout),
        read_timeout=first_present(config.read_timeout, settings.read_timeout),
        json_indent=first_present(config.json_indent, settings.json_indent),
        settings=settings,
    )


def load_settings(config_path: Path) -> Settings:
    """Load a YAML config file into a new Settings.

    Only the process-wide fields are used (base_uri, headers, timeouts,
    json_indent). Install the result with ``configure()`` or pass it to
    ``Client(settings=...)``.
    """
    return settings_from_config(load_client_config(Path(config_path)))


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigurationError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
