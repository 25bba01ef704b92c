"""
Configuration Management for Household Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which storage backend is in use and
ensures all required configuration is validated at startup.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TransferMode(str, Enum):
    """
    How a transfer occurrence enters a cash-flow computation.

    Transfers move money between the user's own accounts, so some
    computations drop them while others count them on one side.
    """
    EXCLUDE = "exclude"
    INCOME = "income"
    EXPENSE = "expense"


class StorageSettings(BaseSettings):
    """Tabular storage backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="HOUSEHOLD_STORAGE_",
        extra="ignore"
    )

    backend: str = Field(
        default="csv",
        pattern="^(memory|csv|google_sheets)$",
        description="Which storage backend serves the tables"
    )
    data_dir: str = Field(
        default="data",
        description="Directory holding <TABLE>.csv files (csv backend)"
    )
    encoding: str = Field(
        default="utf-8",
        description="Text encoding of the CSV files"
    )


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
        description="ID of the spreadsheet holding one worksheet per table"
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


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="HOUSEHOLD_",
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

    # Session actor
    user_id: str = Field(
        default="",
        description="ID of the user the session acts for"
    )

    # Audit trail
    audit_table: str = Field(
        default="AUDIT_LOG",
        pattern="^[A-Z_]+$",
        description="Table the audit log is appended to"
    )
    persist_audit: bool = Field(
        default=False,
        description="Append audit events to the audit table as well as the local log"
    )

    # Cash-flow projection
    completed_funds_transfer_mode: TransferMode = Field(
        default=TransferMode.EXCLUDE,
        description="How transfers count toward completed funds"
    )
    open_events_transfer_mode: TransferMode = Field(
        default=TransferMode.EXCLUDE,
        description="How transfers count toward the open-occurrence projection"
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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

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

    Returns a dict of {setting_name: is_valid}.
    Google Sheets is only checked when it is the selected backend.
    """
    results = {}

    settings = get_settings()

    try:
        storage = settings.storage
        results["storage"] = True
    except Exception as e:
        storage = None
        results["storage"] = False
        results["storage_error"] = str(e)

    if storage is not None and storage.backend == "google_sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
