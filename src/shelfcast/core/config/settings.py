"""Application configuration management module."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .defaults import DEFAULT_CONFIG, DEFAULT_MIME_TYPES
from .merge import merge_settings
from shelfcast.core.env import resolve_cache_dir, resolve_config_path

_MAX_SLEEP_GUARD = 0.5
_MIN_HEARTBEAT_THRESHOLD = 1.0
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EngineSettings:
    """Tunables consumed by `PlayerEngine`."""

    tick_interval: float = 1.0
    heartbeat_threshold: float = 10.0
    sleep_guard: float = 0.5
    seek_back: float = 10.0
    seek_forward: float = 30.0
    default_rate: float = 1.0
    preserves_pitch: bool = True
    close_timeout: float = 5.0
    mime_types: List[str] = field(default_factory=lambda: list(DEFAULT_MIME_TYPES))


@dataclass
class SettingsManager:
    """Simple YAML configuration with default values."""

    config_path: Path = Path("config/settings.yaml")

    def __post_init__(self) -> None:
        self.config_path = resolve_config_path(self.config_path)
        self._data: Dict[str, Any] = {}
        self._user_config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        if self.config_path.exists():
            with self.config_path.open("r", encoding="utf-8") as file:
                user_config = yaml.safe_load(file) or {}
            if not isinstance(user_config, dict):
                user_config = {}
            self._user_config = copy.deepcopy(user_config)
            self._data = merge_settings(DEFAULT_CONFIG, user_config)
        else:
            self._user_config = {}
            self._data = copy.deepcopy(DEFAULT_CONFIG)

    def save(self) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with self.config_path.open("w", encoding="utf-8") as file:
            yaml.safe_dump(self._data, file, allow_unicode=False, sort_keys=True)

    def get_raw(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def _get_float(self, section: str, key: str, *, minimum: float = 0.0) -> float:
        values = self._data.get(section, {})
        value = values.get(key, DEFAULT_CONFIG[section][key])
        try:
            return max(minimum, float(value))
        except (TypeError, ValueError):
            return DEFAULT_CONFIG[section][key]

    # --- general ---
    def get_client_name(self) -> str:
        general = self._data.get("general", {})
        return str(general.get("client_name") or DEFAULT_CONFIG["general"]["client_name"])

    def get_server_url(self) -> str:
        return str(self._data.get("server", {}).get("url") or "")

    def set_server_url(self, url: str) -> None:
        server = self._data.setdefault("server", {})
        server["url"] = str(url).strip()

    def get_device_id(self) -> str:
        """Return the persistent device id, generating and saving one on first use."""
        device = self._data.setdefault("device", {})
        device_id = str(device.get("id") or "").strip()
        if not device_id:
            device_id = uuid.uuid4().hex[:12]
            device["id"] = device_id
            self.save()
        return device_id

    # --- audio ---
    def get_audio_backend(self) -> str:
        audio = self._data.get("audio", {})
        return str(audio.get("backend") or DEFAULT_CONFIG["audio"]["backend"]).strip().lower()

    def set_audio_backend(self, name: str) -> None:
        audio = self._data.setdefault("audio", {})
        audio["backend"] = str(name).strip().lower()

    def get_mime_types(self) -> List[str]:
        audio = self._data.get("audio", {})
        values = audio.get("mime_types")
        if not isinstance(values, list):
            return list(DEFAULT_MIME_TYPES)
        normalized = [str(value).strip().lower() for value in values if str(value).strip()]
        return normalized or list(DEFAULT_MIME_TYPES)

    def get_audio_network_timeout(self) -> float:
        return self._get_float("audio", "network_timeout", minimum=1.0)

    # --- playback ---
    def get_default_rate(self) -> float:
        return min(3.0, self._get_float("playback", "default_rate", minimum=0.5))

    def get_preserves_pitch(self) -> bool:
        playback = self._data.get("playback", {})
        return bool(playback.get("preserves_pitch", DEFAULT_CONFIG["playback"]["preserves_pitch"]))

    def get_tick_interval(self) -> float:
        return self._get_float("playback", "tick_interval_seconds", minimum=0.1)

    def get_heartbeat_threshold(self) -> float:
        return self._get_float("playback", "heartbeat_threshold_seconds", minimum=_MIN_HEARTBEAT_THRESHOLD)

    def set_heartbeat_threshold(self, seconds: float) -> None:
        playback = self._data.setdefault("playback", {})
        playback["heartbeat_threshold_seconds"] = max(_MIN_HEARTBEAT_THRESHOLD, float(seconds))

    def get_sleep_guard(self) -> float:
        # never stop later than the boundary, never more than half a second early
        return min(_MAX_SLEEP_GUARD, self._get_float("playback", "sleep_guard_seconds"))

    def get_seek_back_seconds(self) -> float:
        return self._get_float("playback", "seek_back_seconds")

    def get_seek_forward_seconds(self) -> float:
        return self._get_float("playback", "seek_forward_seconds")

    def get_close_timeout(self) -> float:
        return self._get_float("playback", "close_timeout_seconds")

    # --- network ---
    def get_network_timeout(self) -> float:
        return self._get_float("network", "timeout", minimum=0.5)

    def get_network_retries(self) -> int:
        network = self._data.get("network", {})
        value = network.get("retries", DEFAULT_CONFIG["network"]["retries"])
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return DEFAULT_CONFIG["network"]["retries"]

    def get_progress_push(self) -> bool:
        network = self._data.get("network", {})
        return bool(network.get("progress_push", DEFAULT_CONFIG["network"]["progress_push"]))

    # --- offline ---
    def get_cache_dir(self) -> Optional[Path]:
        offline = self._data.get("offline", {})
        return resolve_cache_dir(offline.get("cache_dir") or None)

    # --- diagnostics ---
    def get_diagnostics_log_level(self) -> str:
        diagnostics = self._data.get("diagnostics", {})
        level = str(diagnostics.get("log_level", DEFAULT_CONFIG["diagnostics"]["log_level"])).upper()
        return level if level in _LOG_LEVELS else DEFAULT_CONFIG["diagnostics"]["log_level"]

    def set_diagnostics_log_level(self, level: str) -> None:
        diagnostics = self._data.setdefault("diagnostics", {})
        diagnostics["log_level"] = str(level).upper()

    def engine_settings(self) -> EngineSettings:
        return EngineSettings(
            tick_interval=self.get_tick_interval(),
            heartbeat_threshold=self.get_heartbeat_threshold(),
            sleep_guard=self.get_sleep_guard(),
            seek_back=self.get_seek_back_seconds(),
            seek_forward=self.get_seek_forward_seconds(),
            default_rate=self.get_default_rate(),
            preserves_pitch=self.get_preserves_pitch(),
            close_timeout=self.get_close_timeout(),
            mime_types=self.get_mime_types(),
        )
