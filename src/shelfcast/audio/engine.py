"""Audio backend selection."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from shelfcast.audio.mock_backend import MockBackendProvider, MockOutput
from shelfcast.audio.mpv_backend import MpvBackendProvider
from shelfcast.audio.types import AudioOutput, OutputBackend
from shelfcast.core.env import is_mock_audio

logger = logging.getLogger(__name__)

__all__ = ["AudioEngine", "AudioOutput", "MockOutput", "OutputBackend"]


class AudioEngine:
    """Keeps the backend providers and hands out outputs."""

    def __init__(
        self,
        providers: Optional[List[OutputBackend]] = None,
        *,
        network_timeout: float = 10.0,
    ) -> None:
        if providers is not None:
            self._providers: List[OutputBackend] = list(providers)
        elif is_mock_audio():
            self._providers = [MockBackendProvider()]
        else:
            self._providers = [MpvBackendProvider(network_timeout=network_timeout), MockBackendProvider()]
        self._outputs: Dict[str, AudioOutput] = {}

    @property
    def backend_names(self) -> List[str]:
        return [provider.name for provider in self._providers]

    def _get_provider(self, name: str) -> Optional[OutputBackend]:
        for provider in self._providers:
            if provider.name == name:
                return provider
        return None

    def create_output(self, preferred: str = "mpv") -> AudioOutput:
        provider = self._get_provider(preferred)
        if provider is not None and provider.is_available():
            output = provider.create_output()
            self._outputs[provider.name] = output
            return output
        for fallback in self._providers:
            if fallback is provider or not fallback.is_available():
                continue
            logger.warning("Audio backend %r unavailable, using %r", preferred, fallback.name)
            output = fallback.create_output()
            self._outputs[fallback.name] = output
            return output
        raise ValueError(f"No audio backend available (wanted {preferred!r})")

    def release_all(self) -> None:
        for name, output in list(self._outputs.items()):
            try:
                output.release()
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Failed to release %s output: %s", name, exc)
            for clear in (output.set_finished_callback, output.set_progress_callback):
                try:
                    clear(None)
                except Exception as exc:  # pylint: disable=broad-except
                    logger.debug("Failed to clear output callback: %s", exc)
        self._outputs.clear()
