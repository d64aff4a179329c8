"""Helpers for environment flags shared across the app."""

from __future__ import annotations

import os
from pathlib import Path


def is_mock_audio() -> bool:
    """Return True when playback should run against the mock audio output."""

    flag = os.environ.get("SHELFCAST_MOCK_AUDIO", "")
    return str(flag).strip().lower() in {"1", "true", "yes", "on"}


def resolve_config_path(default_path: Path) -> Path:
    """Pick config path based on environment overrides."""

    env_path = os.environ.get("SHELFCAST_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    env_dir = os.environ.get("SHELFCAST_CONFIG_DIR")
    if env_dir:
        return Path(env_dir) / "settings.yaml"
    return default_path


def resolve_cache_dir(configured: str | None = None) -> Path | None:
    """Return the offline cache directory, honoring environment overrides."""

    env_path = os.environ.get("SHELFCAST_CACHE_DIR")
    if env_path:
        return Path(env_path)
    if configured:
        return Path(configured).expanduser()
    return None
