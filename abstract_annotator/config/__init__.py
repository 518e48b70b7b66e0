"""Configuration module."""

from abstract_annotator.config.configuration import (
    AppConfig,
    ConfigurationError,
    LockConfig,
    LoggingConfig,
    StorageConfig,
    configure_logging,
    get_config,
    load_config,
    reset_config,
)

__all__ = [
    "AppConfig",
    "ConfigurationError",
    "LockConfig",
    "LoggingConfig",
    "StorageConfig",
    "configure_logging",
    "get_config",
    "load_config",
    "reset_config",
]
