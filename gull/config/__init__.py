"""Configuration package."""

from gull.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
