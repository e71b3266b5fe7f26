"""
Configuration Management for Vittas

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Every table lives in its own worksheet named after the table
    audit_sheet_name: str = Field(
        default="audit_log",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class LedgerSettings(BaseSettings):
    """Shared expense ledger and group configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    currency_code: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="ISO currency code used for display"
    )
    invitation_expiry_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="How many days a group invitation stays valid"
    )


class ReconcilerSettings(BaseSettings):
    """
    Subscription reconciler timing.

    Background triggers (focus, visibility, interval) share one limiter.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECONCILER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    min_refresh_interval_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Non-forced refreshes within this window are dropped"
    )
    forced_refresh_delay_seconds: float = Field(
        default=3.0,
        ge=0.0,
        description="Delay before a forced refresh so the payment webhook can land"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Consecutive failed reads before settling on the default tier"
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Exponential backoff multiplier between failed reads"
    )
    tier_poll_interval_seconds: float = Field(
        default=2.5,
        ge=0.0,
        description="Interval between polls while waiting for a purchased tier"
    )
    tier_poll_attempts: int = Field(
        default=8,
        ge=1,
        description="How many polls to make while waiting for a purchased tier"
    )


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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def reconciler(self) -> ReconcilerSettings:
        return ReconcilerSettings()


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

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("google_sheets", "ledger", "reconciler"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
