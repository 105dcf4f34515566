"""Configuration for the Chronos checks."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from chronos_checks.errors import ConfigError


DEFAULT_CONFIG_PATH = "/etc/chronos-check/config.yaml"
# One year; larger windows overflow datetime arithmetic.
MAX_STATE_TIMEOUT_MINUTES = 525_600


class InventoryNode(BaseModel):
    """One Chronos server listed for an environment."""
    fqdn: str = Field(description="Fully qualified host name of the Chronos server")
    port: int = Field(default=4400, ge=1, le=65535, description="Chronos HTTP port")


class CheckConfig(BaseModel):
    """Main configuration for a check invocation."""

    # Where Chronos lives
    environment: str = Field(default="_default", description="Environment to search for Chronos nodes")
    chronos_url: Optional[str] = Field(default=None, description="Chronos base URL; skips node lookup when set")
    https: bool = Field(default=False, description="Contact Chronos over HTTPS")
    environments: dict[str, list[InventoryNode]] = Field(
        default_factory=dict, description="Chronos nodes per environment"
    )

    # State file
    state_file: str = Field(default="/tmp/chronos-state.json", description="Path to the state file")
    state_timeout_minutes: int = Field(
        default=3, ge=0, le=MAX_STATE_TIMEOUT_MINUTES, description="Minutes before the state file is considered stale"
    )

    # Delivery
    host_label: str = Field(default="chronos", description="Leading label of the Nagios host name")
    nagios_api_url: Optional[str] = Field(default=None, description="Base URL of nagios-api")
    request_timeout_seconds: float = Field(default=15.0, gt=0, description="HTTP timeout for Chronos and Nagios")

    log_level: str = Field(default="WARNING", description="Logging level")

    @property
    def state_path(self) -> Path:
        return Path(self.state_file).expanduser()

    @property
    def scheme(self) -> str:
        return "https" if self.https else "http"


_ENV_OVERRIDES = {
    "environment": "CHRONOS_ENV",
    "chronos_url": "CHRONOS_URL",
    "state_file": "CHRONOS_STATE_FILE",
    "state_timeout_minutes": "CHRONOS_STATE_TIMEOUT",
    "nagios_api_url": "NAGIOS_API_URL",
    "log_level": "LOG_LEVEL",
}


def load_config(config_path: Optional[str] = None, overrides: Optional[dict[str, Any]] = None) -> CheckConfig:
    """Load configuration from file, then environment variables, then explicit overrides."""
    explicit_path = config_path is not None
    if config_path is None:
        config_path = os.getenv("CHRONOS_CHECK_CONFIG", DEFAULT_CONFIG_PATH)
        explicit_path = "CHRONOS_CHECK_CONFIG" in os.environ

    config_data: dict[str, Any] = {}
    path = Path(config_path).expanduser()
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not load config {path}: {e}") from e
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config YAML must be a mapping: {path}")
    elif explicit_path:
        raise ConfigError(f"Config file not found: {path}")

    for key, env_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is not None and value.strip() != "":
            config_data[key] = value.strip()

    for key, value in (overrides or {}).items():
        if value is not None:
            config_data[key] = value

    try:
        return CheckConfig(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
