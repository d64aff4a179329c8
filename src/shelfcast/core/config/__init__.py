"""Application configuration management package.

The public API is available as `shelfcast.core.config` while implementation is
split into focused modules.
"""

from __future__ import annotations

from .defaults import DEFAULT_CONFIG, DEFAULT_MIME_TYPES
from .settings import EngineSettings, SettingsManager

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_MIME_TYPES",
    "EngineSettings",
    "SettingsManager",
]
