from config.settings import (
    Settings, DatabaseConfig, QueueConfig, DispatchConfig,
    LoggingConfig, TransportConfig,
    load_settings, get_settings, reset_settings,
)
from config.logging import configure_logging

__all__ = [
    "Settings", "DatabaseConfig", "QueueConfig", "DispatchConfig",
    "LoggingConfig", "TransportConfig",
    "load_settings", "get_settings", "reset_settings",
    "configure_logging",
]
