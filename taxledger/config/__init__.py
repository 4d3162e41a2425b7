"""Configuration package."""

from taxledger.config.settings import (
    AppSettings,
    NotificationSettings,
    SchedulerSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "NotificationSettings",
    "SchedulerSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
