"""
Shared configuration management for the JWT proxy sidecar.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError

CONFIG_FILE_ENV = "JWT_PROXY_CONFIG_FILE"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="JWT_PROXY_",
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Listener
    name: str = Field(default="jwt-proxy")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8888, ge=1, le=65535)


def read_config_file(path: Optional[str] = None) -> Dict[str, Any]:
    """Read a YAML or JSON config file into a plain mapping.

    The path falls back to ``JWT_PROXY_CONFIG_FILE``; with neither set an
    empty mapping is returned so that configuration can come purely from
    environment variables.
    """
    path = path or os.getenv(CONFIG_FILE_ENV)
    if not path:
        return {}

    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Failed to read config file {config_path}: {exc}") from exc

    try:
        if config_path.suffix.lower() == ".json":
            data = json.loads(raw)
        else:
            data = yaml.safe_load(raw)
    except (ValueError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to parse config file {config_path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping at the top level")
    return data
