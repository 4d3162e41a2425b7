"""
Configuration Management for Tax Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every setting has a working default so the scheduler can run on a fresh
device without any environment, while still allowing overrides for tests
and diagnostics.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """Recurring materialization and dedup window configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TAXLEDGER_SCHEDULER_",
        extra="ignore"
    )

    max_catch_up_occurrences: int = Field(
        default=365,
        ge=1,
        le=10000,
        description="Maximum occurrences materialized for one rule in a single run"
    )
    budget_alert_window_hours: int = Field(
        default=24,
        ge=1,
        le=24 * 31,
        description="Rolling dedup window for budget alerts"
    )
    upcoming_preview_days: int = Field(
        default=7,
        ge=0,
        description="Default look-ahead for upcoming recurring previews"
    )
    summary_lookahead_days: int = Field(
        default=30,
        ge=0,
        description="Look-ahead used when counting upcoming occurrences in summaries"
    )


class NotificationSettings(BaseSettings):
    """Notification delivery configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TAXLEDGER_NOTIFICATIONS_",
        extra="ignore"
    )

    default_reminder_time: str = Field(
        default="20:00",
        description="Daily reminder time used when none is stored (HH:MM)"
    )
    channel_id: str = Field(
        default="taxledger-default",
        description="Delivery channel identifier passed to the platform"
    )
    tax_overdue_reminder_days: int = Field(
        default=30,
        ge=0,
        le=180,
        description="Days after the e-filing deadline the previous year stays the pending filing year"
    )

    @field_validator('default_reminder_time')
    @classmethod
    def validate_reminder_time(cls, v: str) -> str:
        """Reminder time must be HH:MM on a 24 hour clock."""
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Reminder time must be HH:MM, got {v!r}")
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"Reminder time out of range: {v!r}")
        return v


class StorageSettings(BaseSettings):
    """Local SQLite storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TAXLEDGER_STORAGE_",
        extra="ignore"
    )

    database_path: str = Field(
        default="taxledger.db",
        description="Path to the SQLite database file (':memory:' for a throwaway database)"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="How long a write waits on a locked database before failing"
    )

    @field_validator('database_path')
    @classmethod
    def validate_database_path(cls, v: str) -> str:
        """Warn if the database folder doesn't exist (it may be created later)."""
        if v != ":memory:" and not Path(v).parent.exists():
            import warnings
            warnings.warn(
                f"Database folder not found for {v}. "
                "Make sure it exists before running the scheduler."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()

    @property
    def notifications(self) -> NotificationSettings:
        return NotificationSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with a
    "<name>_error" entry for every group that failed to load.
    """
    results = {}

    settings = get_settings()

    for name in ("scheduler", "notifications", "storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
