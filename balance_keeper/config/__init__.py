"""Configuration package."""

from balance_keeper.config.settings import (
    AppSettings,
    LoggingSettings,
    RecurrenceSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "LoggingSettings",
    "RecurrenceSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
