"""
Configuration management for the scraper service.

Uses pydantic-settings to load configuration from environment variables
and YAML files with proper validation.
"""

import json
import os
import re
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ..core.exceptions import ConfigError


class ScraperSettings(BaseSettings):
    """
    Main settings class that loads configuration from environment variables
    and configuration files.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDIAWATCH_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Environment
    environment: str = Field("dev", description="Environment name (dev/test/staging/prod)")

    # Queue broker
    queue_backend: Literal["local", "redis"] = Field("local", description="Job queue broker implementation")
    redis_url: Optional[str] = Field(None, description="Redis connection URL for the redis backend")
    queue_key_prefix: str = Field("mediawatch:queue")
    local_queue_file: Optional[Path] = Field(None, description="JSON snapshot file for the local broker")
    max_dead_letters: int = Field(1000, ge=1, description="Failed jobs kept per lane, oldest dropped first")

    # Job retry policy
    max_attempts: int = Field(3, ge=1, le=20)
    initial_backoff_ms: int = Field(5000, ge=0)
    poll_interval_seconds: float = Field(1.0, gt=0)

    # Sources
    sources_file: Optional[Path] = Field(None, description="YAML file with the seed sources")
    validation_sweep_interval_seconds: float = Field(3600, gt=0)
    probe_timeout_seconds: float = Field(5.0, gt=0, le=60)
    default_validation_interval_seconds: int = Field(3600, ge=1)

    # Crawl loop
    scheduling_interval_seconds: float = Field(60, gt=0)
    max_concurrent_scrapes: int = Field(50, ge=1, le=500)
    request_delay_ms: int = Field(2000, ge=0)
    dedupe_in_flight: bool = Field(True, description="Skip sources that already have a pending crawl job")

    # Browser
    navigation_timeout_ms: int = Field(30000, ge=1000)
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field("networkidle")
    viewport_width: int = Field(1920, ge=320)
    viewport_height: int = Field(1080, ge=240)
    headless: bool = Field(True)
    browser_executable_path: Optional[str] = None
    browser_args: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["--no-sandbox", "--disable-setuid-sandbox"]
    )
    user_agents: Annotated[List[str], NoDecode] = Field(
        default_factory=list, description="Identity strings to rotate; built-ins if empty"
    )

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    json_logs: bool = Field(True, description="Whether to output JSON format logs")

    # Health Check
    health_check_enabled: bool = Field(True)
    health_check_host: str = Field("0.0.0.0")
    health_check_port: int = Field(3001, ge=1024, le=65535)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ["dev", "test", "staging", "prod"]
        if v not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v

    @field_validator("browser_args", "user_agents", mode="before")
    @classmethod
    def parse_string_list(cls, v: Union[str, List[str], None]) -> List[str]:
        """Accept a JSON array or a comma separated string from the environment"""
        if v is None or v == "":
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            if v.lstrip().startswith("["):
                try:
                    parsed = json.loads(v)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Invalid JSON list: {e}")
                if not isinstance(parsed, list):
                    raise ValueError("JSON value must be an array")
                return [str(item) for item in parsed]
            return [item.strip() for item in v.split(",") if item.strip()]
        raise ValueError(f"Expected a list or string, got {type(v)}")

    @model_validator(mode="after")
    def validate_queue_backend(self) -> "ScraperSettings":
        if self.queue_backend == "redis" and not self.redis_url:
            raise ValueError("redis_url is required when queue_backend is 'redis'")
        return self


def _expand_env_variables(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:default} in configuration values."""
    if isinstance(obj, str):

        def replace_env_var(match: "re.Match[str]") -> str:
            var_with_default = match.group(1)
            if ":" in var_with_default:
                var_name, default_value = var_with_default.split(":", 1)
                return os.getenv(var_name, default_value)
            return os.getenv(var_with_default, match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, obj)
    elif isinstance(obj, dict):
        return {key: _expand_env_variables(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_variables(item) for item in obj]
    return obj


def load_yaml_file(file_path: Path) -> Any:
    """
    Load a YAML file with environment variable expansion.

    Raises:
        ConfigError: If the file is missing or is not valid YAML
    """
    if not file_path.exists():
        raise ConfigError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed YAML in {file_path}: {e}") from e

    return _expand_env_variables(data)


def get_config_file_path(environment: str) -> Path:
    """Path of the bundled configuration file for an environment"""
    return Path(__file__).parent / f"{environment}.yaml"


def load_settings(
    environment: Optional[str] = None, config_file: Optional[Union[str, Path]] = None, **overrides: Any
) -> ScraperSettings:
    """
    Load scraper settings from environment variables and configuration files.

    Args:
        environment: Environment name. If None, read from MEDIAWATCH_ENVIRONMENT
        config_file: Path to configuration file. If None, use the bundled file for the environment
        **overrides: Additional configuration overrides

    Returns:
        Configured ScraperSettings instance

    Raises:
        ConfigError: If the configuration is invalid or the config file is unreadable
    """
    if environment is None:
        environment = os.getenv("MEDIAWATCH_ENVIRONMENT", "dev")

    config_data: Dict[str, Any] = {}

    if config_file:
        loaded = load_yaml_file(Path(config_file))
    else:
        default_config_file = get_config_file_path(environment)
        loaded = load_yaml_file(default_config_file) if default_config_file.exists() else {}

    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration root must be a mapping, got {type(loaded).__name__}")
    config_data.update(loaded)

    config_data["environment"] = environment
    config_data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return ScraperSettings(**config_data)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ConfigError(f"Invalid scraper settings: {'; '.join(errors)}", errors) from e


_settings: Optional[ScraperSettings] = None


def get_cached_settings() -> ScraperSettings:
    """Get the process-wide settings instance, loading it on first use"""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings_cache() -> None:
    """Reset the cached settings instance (useful for testing)"""
    global _settings
    _settings = None
