"""Configuration module."""

from beacon.config.loader import get_default_config, load_config
from beacon.config.models import (
    BeaconConfig,
    ConfigError,
    DatabaseConfig,
    DigestConfig,
    OffsetConfig,
    SchedulerConfig,
    WebhookConfig,
)
from beacon.config.paths import (
    get_beacon_home,
    get_config_path,
    get_database_path,
    get_logs_path,
)

__all__ = [
    "BeaconConfig",
    "ConfigError",
    "DatabaseConfig",
    "DigestConfig",
    "OffsetConfig",
    "SchedulerConfig",
    "WebhookConfig",
    "get_beacon_home",
    "get_config_path",
    "get_database_path",
    "get_default_config",
    "get_logs_path",
    "load_config",
]
