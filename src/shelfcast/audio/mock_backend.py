"""Mock audio backend used by tests and headless runs."""

from __future__ import annotations

import logging
from threading import Lock, Timer
from typing import List, Optional

from shelfcast.audio.types import (
    AudioOutput,
    ErrorCallback,
    FinishedCallback,
    ProgressCallback,
    ReadyCallback,
)
from shelfcast.core.config.defaults import DEFAULT_MIME_TYPES
from shelfcast.core.errors import AutoplayBlockedError


logger = logging.getLogger(__name__)


class MockOutput:
    """Stand-in output without real audio.

    Time only moves through :meth:`advance`, either called directly by tests or
    by the optional timer started with :meth:`start_auto_tick`.
    """

    def __init__(
        self,
        *,
        auto_ready: bool = True,
        block_autoplay: bool = False,
        buffer_ahead: float = 30.0,
        mime_types: Optional[List[str]] = None,
    ) -> None:
        self.auto_ready = auto_ready
        self.block_autoplay = block_autoplay
        self.buffer_ahead = buffer_ahead
        self._mime_types = list(mime_types or DEFAULT_MIME_TYPES)
        self.source_id: Optional[str] = None
        self.source: Optional[str] = None
        self.streaming = False
        self.position: float = 0.0
        self.duration: Optional[float] = None
        self.playing = False
        self.rate: float = 1.0
        self.preserves_pitch = True
        self.released = False
        self.opened: List[tuple[str, float]] = []
        self.stop_calls = 0
        self._on_ready: Optional[ReadyCallback] = None
        self._on_progress: Optional[ProgressCallback] = None
        self._on_buffer: Optional[ProgressCallback] = None
        self._on_finished: Optional[FinishedCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._timer: Optional[Timer] = None
        self._tick_interval = 0.1
        self._lock = Lock()

    def open(
        self,
        source_id: str,
        source: str,
        *,
        start_seconds: float = 0.0,
        duration_hint: Optional[float] = None,
        streaming: bool = False,
    ) -> None:
        self.source_id = source_id
        self.source = source
        self.streaming = streaming
        self.duration = duration_hint
        self.position = max(0.0, start_seconds)
        self.playing = False
        self.opened.append((source, self.position))
        logger.info("[MOCK] Opened %s at %.2fs (%s)", source, self.position, source_id)
        if self.auto_ready:
            self.emit_ready()

    def play(self) -> None:
        if self.source_id is None:
            return
        if self.block_autoplay:
            raise AutoplayBlockedError("Playback requires a user gesture")
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def seek(self, seconds: float) -> None:
        if self.source_id is None:
            return
        self.position = max(0.0, seconds)
        if self.duration is not None:
            self.position = min(self.position, self.duration)
        self._emit_progress()

    def stop(self) -> None:
        self.stop_calls += 1
        self.playing = False
        if self.source_id is not None:
            logger.info("[MOCK] Stop %s", self.source_id)
        self.source_id = None
        self.source = None

    def release(self) -> None:
        self.stop_auto_tick()
        self.stop()
        self.released = True

    def is_active(self) -> bool:
        return self.source_id is not None

    def set_rate(self, rate: float) -> None:
        self.rate = rate

    def set_preserves_pitch(self, enabled: bool) -> None:
        self.preserves_pitch = enabled

    def supported_mime_types(self) -> List[str]:
        return list(self._mime_types)

    def set_ready_callback(self, callback: Optional[ReadyCallback]) -> None:
        self._on_ready = callback

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        self._on_progress = callback

    def set_buffer_callback(self, callback: Optional[ProgressCallback]) -> None:
        self._on_buffer = callback

    def set_finished_callback(self, callback: Optional[FinishedCallback]) -> None:
        self._on_finished = callback

    def set_error_callback(self, callback: Optional[ErrorCallback]) -> None:
        self._on_error = callback

    # --- simulation controls ---
    def emit_ready(self, source_id: Optional[str] = None) -> None:
        target = source_id or self.source_id
        if target and self._on_ready:
            self._on_ready(target)

    def fail(self, message: str, source_id: Optional[str] = None) -> None:
        target = source_id or self.source_id
        self.playing = False
        if target and self._on_error:
            self._on_error(target, message)

    def advance(self, seconds: float) -> None:
        """Move the playhead forward by ``seconds`` of wall time while playing."""
        with self._lock:
            if not self.playing or self.source_id is None:
                return
            self.position += seconds * self.rate
            finished = self.duration is not None and self.position >= self.duration
            if finished:
                self.position = float(self.duration or 0.0)
            source_id = self.source_id
        self._emit_progress()
        if finished:
            self.playing = False
            if self._on_finished:
                self._on_finished(source_id)

    def start_auto_tick(self, interval: float = 0.1) -> None:
        self._tick_interval = interval
        self._schedule()

    def stop_auto_tick(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None

    def _schedule(self) -> None:
        self._timer = Timer(self._tick_interval, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self) -> None:
        try:
            self.advance(self._tick_interval)
        except Exception:  # pylint: disable=broad-except
            logger.exception("[MOCK] Tick failed")
        if self._timer is not None:
            self._schedule()

    def _emit_progress(self) -> None:
        source_id = self.source_id
        if source_id is None:
            return
        if self._on_progress:
            self._on_progress(source_id, self.position)
        if self._on_buffer:
            buffered = self.position + self.buffer_ahead
            if self.duration is not None:
                buffered = min(buffered, self.duration)
            self._on_buffer(source_id, buffered)


class MockBackendProvider:
    """Backend for tests and runs without an audio device."""

    name = "mock"

    def __init__(self, **output_options) -> None:
        self._output_options = output_options

    def is_available(self) -> bool:
        return True

    def create_output(self) -> AudioOutput:
        return MockOutput(**self._output_options)
