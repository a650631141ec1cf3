"""Configuration loading and validation."""

from dtf_rip.configs.loader import (
    DispatchConfig,
    LoggingConfig,
    ProcessingConfig,
    RipConfig,
    SeparationConfig,
    StorageConfig,
    load_config,
)
from dtf_rip.errors import ConfigError

__all__ = [
    "ConfigError",
    "DispatchConfig",
    "LoggingConfig",
    "ProcessingConfig",
    "RipConfig",
    "SeparationConfig",
    "StorageConfig",
    "load_config",
]
