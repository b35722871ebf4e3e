"""YAML configuration with ${ENV_VAR} substitution."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_DB_PATH = "data/aginews.db"

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


class ConfigError(Exception):
    """Configuration is missing or lacks a required credential."""


def resolve_env(value: Any) -> Any:
    """Recursively replace ${VAR} in strings with the environment value (missing -> "")."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value).strip()
    if isinstance(value, dict):
        return {k: resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env(v) for v in value]
    return value


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load and return the YAML configuration with environment references resolved."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return resolve_env(config)
