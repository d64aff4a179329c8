"""Default configuration values."""

from __future__ import annotations

from typing import Any, Dict, List

# Ordered by direct-play preference.
DEFAULT_MIME_TYPES: List[str] = [
    "audio/flac",
    "audio/mpeg",
    "audio/mp4",
    "audio/ogg",
    "audio/aac",
]

DEFAULT_CONFIG: Dict[str, Any] = {
    "general": {
        "client_name": "shelfcast",
    },
    "server": {
        "url": "",
    },
    "device": {
        "id": "",
    },
    "audio": {
        "backend": "mpv",
        "mime_types": list(DEFAULT_MIME_TYPES),
        "network_timeout": 10.0,
    },
    "playback": {
        "default_rate": 1.0,
        "preserves_pitch": True,
        "tick_interval_seconds": 1.0,
        "heartbeat_threshold_seconds": 10.0,
        "sleep_guard_seconds": 0.5,
        "seek_back_seconds": 10.0,
        "seek_forward_seconds": 30.0,
        "close_timeout_seconds": 5.0,
    },
    "network": {
        "timeout": 5.0,
        "retries": 3,
        "progress_push": True,
    },
    "offline": {
        "cache_dir": "",
    },
    "diagnostics": {
        "log_level": "WARNING",
    },
}
