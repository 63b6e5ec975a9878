"""
Configuration Management for the GULL Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Ledger policy (who is privileged, whether deductions touch balances) lives
next to the storage configuration so a deployment is described in one place.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger and balance policy."""

    model_config = SettingsConfigDict(
        env_prefix="GULL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_balance: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Balance of a user with no stored balance"
    )
    privileged_user_ids: str = Field(
        default="",
        description="Comma-separated ids of users with unlimited balance"
    )
    allow_negative_corrections: bool = Field(
        default=True,
        description="Allow negative amounts on manually entered entries"
    )
    deductions_affect_balance: bool = Field(
        default=True,
        description="Credit/debit balances for filter deduction entries"
    )
    large_amount_warning: Decimal = Field(
        default=Decimal("1000000"),
        gt=0,
        description="Entry amounts above this are flagged for review"
    )
    min_topup_amount: Decimal = Field(
        default=Decimal("100"),
        gt=0,
        description="Smallest balance top-up in PKR"
    )
    max_topup_amount: Decimal = Field(
        default=Decimal("100000"),
        gt=0,
        description="Largest balance top-up in PKR"
    )

    @property
    def privileged_users(self) -> set[str]:
        """Privileged user ids as a set."""
        return {
            user_id.strip()
            for user_id in self.privileged_user_ids.split(",")
            if user_id.strip()
        }


class StorageSettings(BaseSettings):
    """Which repository backend to use."""

    model_config = SettingsConfigDict(
        env_prefix="GULL_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|json|sheets)$",
        description="Repository backend"
    )
    data_dir: str = Field(
        default=".gull-data",
        description="Directory for the JSON file backend"
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
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    entries_sheet_name: str = Field(default="Entries")
    balances_sheet_name: str = Field(default="Balances")
    audit_sheet_name: str = Field(default="AuditLog")

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
        description="Enable debug logging"
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
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

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

    Returns a dict of {setting_name: is_valid}, plus {name}_error
    entries for sections that failed to load. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "storage", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
