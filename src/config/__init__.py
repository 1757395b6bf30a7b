"""Configuration package."""

from src.config.settings import (
    AppSettings,
    CacheSettings,
    DataLayerSettings,
    FirestoreSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CacheSettings",
    "DataLayerSettings",
    "FirestoreSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
