"""
Configuration Management for Lifeline

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which backend is in use and which
forecast constants apply, and validates them at startup.

NOTE: This is application configuration (where data lives, how far
to forecast). The user's own preferences (payday, currency, locale)
are ledger data, see lifeline.models.ledger.UserSettings.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
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

    # Worksheet names within the spreadsheet
    accounts_sheet_name: str = Field(default="Accounts")
    transactions_sheet_name: str = Field(default="Transactions")
    rules_sheet_name: str = Field(default="RecurringRules")
    settings_sheet_name: str = Field(default="Settings")

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


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from LIFELINE_* environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIFELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Logging
    debug_mode: bool = Field(
        default=False,
        description="Log at DEBUG regardless of log_level"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )

    # Storage
    storage_backend: Literal["sqlite", "json", "google_sheets"] = Field(
        default="sqlite",
        description="Which storage implementation to use"
    )
    database_path: str = Field(
        default="lifeline.db",
        description="SQLite database file (':memory:' for a throwaway store)"
    )
    json_store_path: str = Field(
        default="lifeline.json",
        description="JSON document store file"
    )

    # Forecast
    forecast_horizon_days: int = Field(
        default=90,
        ge=1,
        le=730,
        description="How many days ahead to project"
    )
    average_window_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Trailing window for the daily expense average"
    )
    min_average_daily_expense: Decimal = Field(
        default=Decimal("100"),
        gt=0,
        description="Average used for the safety level when there is no spending history"
    )

    # Safety thresholds
    safe_ratio: Decimal = Field(
        default=Decimal("1.2"),
        gt=0,
        description="Allowance/average ratio at or above which spending is safe"
    )
    warning_ratio: Decimal = Field(
        default=Decimal("0.8"),
        gt=0,
        description="Allowance/average ratio at or above which spending is a warning"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug_mode else self.log_level


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

    # Loaded lazily so the Sheets settings are only required when used

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    Returns a dict of {setting_name: is_valid}, plus "<name>_error"
    entries describing failures. Google Sheets is only checked when
    it is the selected backend.
    """
    results = {}

    settings = get_settings()

    try:
        app = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)
        return results

    if app.storage_backend == "google_sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results
