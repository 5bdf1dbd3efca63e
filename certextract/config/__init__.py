"""Configuration for certextract."""

from .extraction_settings import (
    DEFAULT_DOCUMENT_THRESHOLDS,
    EnvSettingsSource,
    ExtractionSettings,
    SettingsCache,
    SettingsSource,
    StaticSettingsSource,
    parse_extraction_settings,
)
from .settings import Settings, get_settings

__all__ = [
    "DEFAULT_DOCUMENT_THRESHOLDS",
    "EnvSettingsSource",
    "ExtractionSettings",
    "Settings",
    "SettingsCache",
    "SettingsSource",
    "StaticSettingsSource",
    "get_settings",
    "parse_extraction_settings",
]
