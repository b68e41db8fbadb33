"""Configuration management module."""

from barsync.core.config.settings import (
    BarSyncConfig,
    BulkConfig,
    ConfigManager,
    LoggingConfig,
    QualityConfig,
    ReconcilerConfig,
    SchedulerConfig,
    StorageConfig,
    UpstreamConfig,
    get_default_config,
    load_config_from_env,
)

__all__ = [
    "BarSyncConfig",
    "BulkConfig",
    "ConfigManager",
    "LoggingConfig",
    "QualityConfig",
    "ReconcilerConfig",
    "SchedulerConfig",
    "StorageConfig",
    "UpstreamConfig",
    "get_default_config",
    "load_config_from_env",
]
