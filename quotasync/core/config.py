# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
quotasync Configuration System

Configuration is merged from (lowest to highest precedence):
- Programmatic defaults
- ~/.quotasync/config.yaml
- ./.quotasync.yaml
- An explicit config file (``--config``)
- Environment variables (QUOTASYNC_*, KUBECONFIG)

Validation is done with Pydantic; an invalid configuration is fatal.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError, ConfigValidationError

logger = logging.getLogger("quotasync.config")


# ============================================================================
# Configuration Models
# ============================================================================


class SubstrateConfig(BaseModel):
    """How to reach the API server and where the Quota Limit resource lives"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    api_server: Optional[str] = Field(
        default=None, description="API server URL, overrides kubeconfig"
    )
    token: Optional[str] = Field(default=None, description="Bearer token")
    token_file: Optional[Path] = Field(
        default=None, description="File holding the bearer token"
    )
    ca_file: Optional[Path] = Field(
        default=None, description="CA bundle used to verify the API server"
    )
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")
    kubeconfig: Optional[Path] = Field(
        default=None, description="Path to a kubeconfig file"
    )
    context: Optional[str] = Field(
        default=None, description="kubeconfig context, current-context if unset"
    )
    in_cluster: bool = Field(
        default=False, description="Use the pod service account credentials"
    )
    request_timeout: float = Field(
        default=30.0, description="HTTP request timeout (seconds)", gt=0
    )

    quota_group: str = Field(
        default="arbitrator.incubator.k8s.io",
        description="API group of the Quota Limit resource",
    )
    quota_version: str = Field(default="v1", description="API version")
    quota_plural: str = Field(default="queues", description="Resource plural")
    quota_kind: str = Field(default="Queue", description="Resource kind")

    @field_validator("token_file", "ca_file", "kubeconfig", mode="before")
    @classmethod
    def ensure_path(cls, v):
        """Convert strings to Path objects"""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @field_validator("api_server")
    @classmethod
    def strip_trailing_slash(cls, v):
        if v:
            return v.rstrip("/")
        return v


class ManagerConfig(BaseModel):
    """Reconciliation loop settings"""

    resync_period_seconds: float = Field(
        default=0.5, description="Drift-correction period (seconds)", gt=0
    )
    create_missing: bool = Field(
        default=False,
        description="Let drift correction create a missing Hard Limit",
    )
    watch_timeout_seconds: int = Field(
        default=300, description="Server-side watch timeout (seconds)", ge=1
    )
    watch_backoff_seconds: float = Field(
        default=1.0, description="Delay before re-opening a dropped watch", ge=0
    )


class ObservabilityConfig(BaseModel):
    """Logging configuration"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Log file path")
    file_output: bool = Field(default=False, description="Also log to a file")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator("log_file", mode="before")
    @classmethod
    def ensure_path(cls, v):
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class QuotaSyncConfig(BaseModel):
    """Complete quotasync configuration"""

    substrate: SubstrateConfig = Field(default_factory=SubstrateConfig)
    manager: ManagerConfig = Field(default_factory=ManagerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# ============================================================================
# Configuration Loader
# ============================================================================


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigLoader:
    """Load configuration from multiple sources"""

    # env var -> (section, key, converter)
    ENV_MAPPING = {
        "QUOTASYNC_API_SERVER": ("substrate", "api_server", str),
        "QUOTASYNC_TOKEN": ("substrate", "token", str),
        "QUOTASYNC_TOKEN_FILE": ("substrate", "token_file", str),
        "QUOTASYNC_CA_FILE": ("substrate", "ca_file", str),
        "QUOTASYNC_VERIFY_SSL": ("substrate", "verify_ssl", _as_bool),
        "KUBECONFIG": ("substrate", "kubeconfig", str),
        "QUOTASYNC_CONTEXT": ("substrate", "context", str),
        "QUOTASYNC_IN_CLUSTER": ("substrate", "in_cluster", _as_bool),
        "QUOTASYNC_REQUEST_TIMEOUT": ("substrate", "request_timeout", float),
        "QUOTASYNC_RESYNC_PERIOD": ("manager", "resync_period_seconds", float),
        "QUOTASYNC_CREATE_MISSING": ("manager", "create_missing", _as_bool),
        "QUOTASYNC_LOG_LEVEL": ("observability", "log_level", str),
        "QUOTASYNC_LOG_FILE": ("observability", "log_file", str),
    }

    @staticmethod
    def load_from_env(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        environ = os.environ if environ is None else environ
        config: Dict[str, Any] = {}

        for env_name, (section, key, convert) in ConfigLoader.ENV_MAPPING.items():
            raw = environ.get(env_name)
            if not raw:
                continue
            if env_name == "KUBECONFIG":
                # KUBECONFIG may be a list; the first entry wins
                raw = raw.split(os.pathsep)[0]
            try:
                config.setdefault(section, {})[key] = convert(raw)
            except ValueError as e:
                raise ConfigValidationError(
                    f"Invalid value for {env_name}: {raw!r}", cause=e
                )

        return config

    @staticmethod
    def load_from_file(file_path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file"""
        if not file_path.exists():
            return {}

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(
                f"Failed to load config file {file_path}", cause=e
            )

        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"Config file {file_path} must contain a mapping"
            )
        return data

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result: Dict[str, Any] = {}
        for config in configs:
            for key, value in config.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = ConfigLoader.merge_configs(result[key], value)
                else:
                    result[key] = value
        return result


def default_config_locations() -> List[Path]:
    return [
        Path.home() / ".quotasync" / "config.yaml",
        Path.cwd() / ".quotasync.yaml",
    ]


def load_config(
    config_file: Optional[Path] = None,
    env_override: bool = True,
    overrides: Optional[Dict[str, Any]] = None,
    search_defaults: bool = True,
) -> QuotaSyncConfig:
    """
    Load configuration from all sources

    Args:
        config_file: Optional specific config file to load
        env_override: Whether environment variables override file config
        overrides: Highest-precedence values, e.g. from CLI flags
        search_defaults: Read the default config file locations

    Returns:
        QuotaSyncConfig instance

    Raises:
        ConfigError: A config file could not be read
        ConfigValidationError: The merged configuration is invalid
    """
    configs = []

    if search_defaults:
        for location in default_config_locations():
            file_config = ConfigLoader.load_from_file(location)
            if file_config:
                configs.append(file_config)
                logger.debug(f"Loaded config from {location}")

    if config_file:
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        file_config = ConfigLoader.load_from_file(config_file)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_file}")

    if env_override:
        env_config = ConfigLoader.load_from_env()
        if env_config:
            configs.append(env_config)
            logger.debug("Loaded config from environment")

    if overrides:
        configs.append(overrides)

    merged = ConfigLoader.merge_configs(*configs) if configs else {}

    try:
        return QuotaSyncConfig(**merged)
    except ValidationError as e:
        raise ConfigValidationError(
            "Configuration validation failed",
            details={"errors": [err["msg"] for err in e.errors()]},
            cause=e,
        )
