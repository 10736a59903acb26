"""
Configuration loader for YAML files.

Loads app.yaml, expands environment references, layers the well-known
deployment environment variables on top, and validates into AppConfig.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import AppConfig


DEFAULT_CONFIG_PATH = Path("configs/app.yaml")

# Environment variable -> dotted config key
ENV_OVERRIDES: dict[str, str] = {
    "ENVIRONMENT": "environment",
    "DATABASE_URL": "database.url",
    "TARGET_URL": "site.target_url",
    "ENCRYPT_KEY": "security.encryption_key",
    "SERVICE_API_KEY": "api.api_key",
    "PORT": "api.port",
    "LOG_LEVEL": "logging.level",
}

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    def __init__(self, message: str, path: Path | None = None, details: str | None = None):
        self.path = path
        self.details = details
        super().__init__(message)


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dictionary.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}", path=path)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read {path}", path=path, details=str(e)) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}", path=path, details=str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}", path=path)
    return data


def _expand_env_vars(data: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""

    def replacer(match: re.Match[str]) -> str:
        return environ.get(match.group(1), match.group(2) or "")

    def expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_PATTERN.sub(replacer, value)
        elif isinstance(value, dict):
            return {k: expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [expand_value(item) for item in value]
        return value

    return expand_value(data)


def _apply_env_overrides(data: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    """Layer deployment environment variables onto the loaded mapping."""
    for env_name, dotted in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue

        node = data
        *parents, leaf = dotted.split(".")
        for key in parents:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[leaf] = value

    return data


def load_app_config(
    path: Path | str | None = None,
    expand_env: bool = True,
    environ: dict[str, str] | None = None,
) -> AppConfig:
    """Load application configuration from YAML file.

    A missing file is not an error: defaults plus environment overrides
    are returned.

    Args:
        path: Path to app.yaml (default: configs/app.yaml)
        expand_env: Whether to expand environment variables
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigError: If configuration is invalid
    """
    path = DEFAULT_CONFIG_PATH if path is None else Path(path)
    environ = dict(os.environ) if environ is None else environ

    data: dict[str, Any] = _load_yaml_file(path) if path.exists() else {}

    if expand_env:
        data = _expand_env_vars(data, environ)
    data = _apply_env_overrides(data, environ)

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid app configuration in {path}",
            path=path,
            details=str(e),
        ) from e
