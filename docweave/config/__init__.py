"""Configuration: feature flags and server settings."""

from __future__ import annotations

from .feature_flags import FEATURE_DEFAULTS, is_enabled, load_feature_flags, refresh_cache
from .settings import Settings, load_settings

__all__ = [
    "FEATURE_DEFAULTS",
    "Settings",
    "is_enabled",
    "load_feature_flags",
    "load_settings",
    "refresh_cache",
]
