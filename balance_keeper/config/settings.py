"""
Configuration Management for Balance Keeper

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The ledger core itself takes plain constructor arguments; only the
factory in orchestrator.py and the command line read these settings.
"""

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Persistence backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|sqlite)$",
        description="Which storage backend to use"
    )
    sqlite_path: str = Field(
        default="balance_keeper.db",
        description="Path to the SQLite database file"
    )
    lock_retry_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts to acquire the SQLite write lock before failing"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=60.0,
        description="SQLite busy timeout per attempt"
    )


class RecurrenceSettings(BaseSettings):
    """Recurring transaction generation configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_RECURRENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    lookahead_months: int = Field(
        default=12,
        ge=1,
        le=120,
        description="Horizon for inline recurrences without an explicit end date"
    )
    upcoming_window_days: int = Field(
        default=7,
        ge=1,
        le=366,
        description="Default window for upcoming-transaction queries"
    )


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum log level"
    )
    json_output: bool = Field(
        default=True,
        description="Render logs as JSON (False renders for a console)"
    )

    @field_validator('level', mode='before')
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # "Today" is evaluated in this zone by the system clock
    timezone: str = Field(
        default="UTC",
        description="IANA time zone used to decide the current calendar day"
    )

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown zones at startup rather than on first use."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown time zone: {v}")
        return v


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
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def recurrence(self) -> RecurrenceSettings:
        return RecurrenceSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an extra
    "<name>_error" entry describing each failure. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("storage", "recurrence", "logging", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
