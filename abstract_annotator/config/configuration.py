"""Configuration module for the annotation workbench.

Loads settings from environment-specific config files:
- APP_ENV=dev  → config_dev.yaml
- APP_ENV=test → config_test.yaml
- Default      → config.yaml

Environment overrides (e.g. ANNOTATOR_DB_PATH) are read from the .env file.
Fails fast with clear error messages if configuration is missing or invalid.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _get_project_root() -> Path:
    """Get the project root directory (where config.yaml lives)."""
    # Navigate from abstract_annotator/config/ up to project root
    return Path(__file__).parent.parent.parent


def _get_config_filename() -> str:
    """Get config filename based on APP_ENV environment variable.

    Returns:
        Config filename:
        - APP_ENV=dev  → config_dev.yaml
        - APP_ENV=test → config_test.yaml
        - Default      → config.yaml
    """
    app_env = os.environ.get("APP_ENV", "").lower()

    if app_env == "dev":
        return "config_dev.yaml"
    elif app_env == "test":
        return "config_test.yaml"
    else:
        return "config.yaml"


def _load_yaml_config() -> dict:
    """Load configuration from environment-specific config file."""
    config_filename = _get_config_filename()
    config_path = _get_project_root() / config_filename

    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}. "
            f"Set APP_ENV to 'dev' or 'test', or create {config_filename}."
        )

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _get_optional_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get optional environment variable with default."""
    return os.environ.get(key, default)


def _get_positive_int(section: dict, key: str, default: int) -> int:
    """Read a positive integer setting or raise ConfigurationError."""
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"Setting '{key}' must be a positive integer, got {value!r}")
    return value


@dataclass(frozen=True)
class StorageConfig:
    """Key-value store configuration."""
    path: str


@dataclass(frozen=True)
class LockConfig:
    """Document lock and operation deadline configuration."""
    operation_timeout_ms: int
    poll_interval_ms: int
    stale_after_ms: int

    @property
    def operation_timeout(self) -> float:
        return self.operation_timeout_ms / 1000

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def stale_after(self) -> float:
        return self.stale_after_ms / 1000


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    level: str


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration container."""
    storage: StorageConfig
    lock: LockConfig
    logging: LoggingConfig


def load_config() -> AppConfig:
    """
    Load and validate all application configuration.

    Loads from the environment-specific YAML file, with ANNOTATOR_DB_PATH
    from the environment (or .env) overriding the storage path.

    Returns:
        AppConfig: Validated application configuration.

    Raises:
        ConfigurationError: If configuration is missing or invalid.
    """
    # Load environment variables from .env file
    load_dotenv()

    yaml_config = _load_yaml_config()

    # Build Storage config
    storage_section = yaml_config.get("storage", {})

    storage_config = StorageConfig(
        path=_get_optional_env("ANNOTATOR_DB_PATH", storage_section.get("path", "annotations.db")),
    )

    # Build Lock config
    lock_section = yaml_config.get("lock", {})

    lock_config = LockConfig(
        operation_timeout_ms=_get_positive_int(lock_section, "operation_timeout_ms", 5000),
        poll_interval_ms=_get_positive_int(lock_section, "poll_interval_ms", 100),
        stale_after_ms=_get_positive_int(lock_section, "stale_after_ms", 10000),
    )

    # Build Logging config
    logging_section = yaml_config.get("logging", {})
    level = str(logging_section.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigurationError(f"Unknown logging level: {level}")

    logging_config = LoggingConfig(level=level)

    return AppConfig(
        storage=storage_config,
        lock=lock_config,
        logging=logging_config,
    )


def configure_logging(config: AppConfig) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Module-level singleton for convenience
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the application configuration singleton.

    Lazy-loads configuration on first access.
    Config file is selected based on APP_ENV environment variable.

    Returns:
        AppConfig: Application configuration.

    Raises:
        ConfigurationError: If configuration is missing or invalid.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the config singleton. Useful for testing."""
    global _config
    _config = None
