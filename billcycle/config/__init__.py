"""Configuration package."""

from billcycle.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    Settings,
    SQLiteSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "Settings",
    "SQLiteSettings",
    "get_settings",
    "validate_all_settings",
]
