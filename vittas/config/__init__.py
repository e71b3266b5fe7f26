"""Configuration package."""

from vittas.config.settings import (
    GoogleSheetsSettings,
    LedgerSettings,
    ReconcilerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GoogleSheetsSettings",
    "LedgerSettings",
    "ReconcilerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
