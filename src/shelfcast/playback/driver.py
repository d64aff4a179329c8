"""Playback driver: one audio output, two timing models, one seek API."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from shelfcast.audio.types import AudioOutput
from shelfcast.core.errors import AutoplayBlockedError, PlaybackError
from shelfcast.core.models import AudioTrack, PlaybackSession
from shelfcast.core.state import PlayerEvent, PlayerState
from shelfcast.playback.strategy import DeliveryStrategy, strategy_for


logger = logging.getLogger(__name__)

MIN_RATE = 0.5
MAX_RATE = 3.0


class DriverState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    SEEKING = "seeking"
    ENDED = "ended"


class PlaybackDriver:
    """Owns the audio output and keeps `PlayerState` in book-global time.

    The driver never branches on delivery mode; all time translation goes
    through the active `DeliveryStrategy`.
    """

    def __init__(
        self,
        output: AudioOutput,
        state: PlayerState,
        url_for: Callable[[AudioTrack], str],
        *,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self._output = output
        self._state = state
        self._url_for = url_for
        self._lock = lock or threading.RLock()
        self._strategy: Optional[DeliveryStrategy] = None
        self._index = 0
        self._generation = 0
        self._source_id: Optional[str] = None
        self._attached_ready = False
        self._status = DriverState.IDLE
        self._seek_origin: Optional[DriverState] = None
        self._play_when_ready = False
        self._rate = 1.0
        self._preserves_pitch = True
        self._released = False

        output.set_ready_callback(self._handle_ready)
        output.set_progress_callback(self._handle_progress)
        output.set_buffer_callback(self._handle_buffer)
        output.set_finished_callback(self._handle_finished)
        output.set_error_callback(self._handle_error)

    @property
    def status(self) -> DriverState:
        return self._status

    @property
    def strategy(self) -> Optional[DeliveryStrategy]:
        return self._strategy

    @property
    def segment_index(self) -> int:
        return self._index

    @property
    def output(self) -> AudioOutput:
        return self._output

    # --- commands ---
    def load(self, session: PlaybackSession, start_at: float, *, autoplay: bool = True) -> None:
        with self._lock:
            self._detach()
            strategy = strategy_for(session)
            self._strategy = strategy
            start = strategy.clamp(start_at)
            self._play_when_ready = autoplay
            self._seek_origin = None
            self._status = DriverState.LOADING
            self._state.update(
                PlayerEvent.LOADING_CHANGED,
                is_loading=True,
                is_playing=False,
                duration=strategy.duration,
                current_time=start,
                buffered_time=start,
                is_streaming=strategy.streaming,
                playback_rate=self._rate,
            )
            index, local = strategy.segment_for(start)
            logger.debug("Driver: loading segment %d at local %.2fs (global %.2fs)", index, local, start)
            self._attach(index, local)

    def play(self) -> None:
        with self._lock:
            if self._strategy is None or self._status in (DriverState.IDLE, DriverState.ENDED):
                return
            if not self._attached_ready:
                self._play_when_ready = True
                if self._status is DriverState.SEEKING:
                    self._seek_origin = DriverState.PLAYING
                return
            self._start_output()

    def pause(self) -> None:
        with self._lock:
            if self._strategy is None or self._status in (DriverState.IDLE, DriverState.ENDED):
                return
            self._play_when_ready = False
            if self._status is DriverState.SEEKING:
                self._seek_origin = DriverState.PAUSED
            elif self._status is DriverState.PLAYING:
                self._status = DriverState.PAUSED
            if self._attached_ready:
                self._output.pause()
            if self._state.is_playing:
                self._state.update(PlayerEvent.PLAYBACK_CHANGED, is_playing=False)

    def toggle(self) -> None:
        with self._lock:
            if self._state.is_playing:
                self.pause()
            else:
                self.play()

    def seek(self, target: float) -> None:
        with self._lock:
            strategy = self._strategy
            if strategy is None or self._status is DriverState.IDLE:
                return
            target = strategy.clamp(target)
            if self._status is DriverState.SEEKING:
                origin = self._seek_origin or DriverState.PAUSED
            elif self._status is DriverState.LOADING:
                origin = DriverState.PLAYING if self._play_when_ready else DriverState.PAUSED
            elif self._status is DriverState.ENDED:
                origin = DriverState.PAUSED
            else:
                origin = self._status
            index, local = strategy.segment_for(target)
            local_seek = (
                index == self._index
                and self._attached_ready
                and self._status is not DriverState.ENDED
                and self._output.is_active()
            )
            if self._status is not DriverState.LOADING:
                self._status = DriverState.SEEKING
                self._seek_origin = origin
            self._state.update(PlayerEvent.POSITION_CHANGED, current_time=target)
            if local_seek:
                self._output.seek(local)
                return
            self._play_when_ready = origin is DriverState.PLAYING
            logger.debug("Driver: switching to segment %d for seek to %.2fs", index, target)
            self._attach(index, local)

    def set_rate(self, rate: float) -> float:
        with self._lock:
            self._rate = min(MAX_RATE, max(MIN_RATE, float(rate)))
            try:
                self._output.set_rate(self._rate)
            except PlaybackError as exc:
                logger.warning("Driver: output refused rate %.2f: %s", self._rate, exc)
            self._state.update(PlayerEvent.PLAYBACK_CHANGED, playback_rate=self._rate)
            return self._rate

    def set_preserves_pitch(self, enabled: bool) -> None:
        with self._lock:
            self._preserves_pitch = bool(enabled)
            self._output.set_preserves_pitch(self._preserves_pitch)
            self._state.update(PlayerEvent.PLAYBACK_CHANGED, preserves_pitch=self._preserves_pitch)

    def unload(self) -> None:
        """Stop the current source and return to IDLE."""
        with self._lock:
            self._detach()
            self._strategy = None
            self._status = DriverState.IDLE
            if self._state.is_playing:
                self._state.update(PlayerEvent.PLAYBACK_CHANGED, is_playing=False)

    def release(self) -> None:
        """Unload, then release the output once the lock is dropped.

        Callers must not hold the lock: mpv joins its event thread on release
        and that thread may be waiting for the lock inside a callback.
        """
        with self._lock:
            if self._released:
                return
            self._released = True
            self.unload()
        try:
            self._output.release()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Driver: failed to release output: %s", exc)

    # --- attachment ---
    def _attach(self, index: int, local: float) -> None:
        strategy = self._strategy
        assert strategy is not None
        # the previous source is torn down before the next one is opened
        self._detach()
        self._generation += 1
        track = strategy.segment(index)
        source_id = f"{self._generation}:{index}"
        self._index = index
        self._source_id = source_id
        self._attached_ready = False
        try:
            self._output.set_rate(self._rate)
            self._output.set_preserves_pitch(self._preserves_pitch)
            self._output.open(
                source_id,
                self._url_for(track),
                start_seconds=local,
                duration_hint=track.duration or None,
                streaming=strategy.streaming,
            )
        except PlaybackError as exc:
            self._fail(exc)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Driver: opening segment %d failed", index)
            self._fail(PlaybackError(f"Could not open audio source: {exc}"))

    def _detach(self) -> None:
        if self._source_id is None:
            return
        self._source_id = None
        self._attached_ready = False
        try:
            self._output.stop()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Driver: failed to stop output: %s", exc)

    def _is_current(self, source_id: str) -> bool:
        if source_id != self._source_id:
            logger.debug("Driver: dropping event from superseded source %s", source_id)
            return False
        return True

    def _start_output(self) -> None:
        try:
            self._output.play()
        except AutoplayBlockedError as exc:
            logger.info("Driver: autoplay blocked, waiting for user action (%s)", exc)
            if self._status is DriverState.LOADING:
                self._status = DriverState.READY
            if self._state.is_playing:
                self._state.update(PlayerEvent.PLAYBACK_CHANGED, is_playing=False)
            return
        except PlaybackError as exc:
            self._fail(exc)
            return
        if self._status is DriverState.SEEKING:
            self._seek_origin = DriverState.PLAYING
        else:
            self._status = DriverState.PLAYING
        if not self._state.is_playing:
            self._state.update(PlayerEvent.PLAYBACK_CHANGED, is_playing=True)

    def _finish_seek(self) -> None:
        if self._status is DriverState.SEEKING:
            self._status = self._seek_origin or DriverState.PAUSED
            self._seek_origin = None

    def _fail(self, exc: PlaybackError) -> None:
        logger.error("Driver: playback failed: %s", exc)
        self._detach()
        self._status = DriverState.IDLE
        self._play_when_ready = False
        self._state.set_error(exc)

    # --- output events ---
    def _handle_ready(self, source_id: str) -> None:
        with self._lock:
            if not self._is_current(source_id):
                return
            self._attached_ready = True
            if self._status is DriverState.LOADING:
                self._status = DriverState.READY
                self._state.update(PlayerEvent.LOADING_CHANGED, is_loading=False)
            if self._play_when_ready:
                self._play_when_ready = False
                self._start_output()
            elif self._status is DriverState.SEEKING and self._seek_origin is DriverState.PLAYING:
                self._seek_origin = DriverState.PAUSED
            self._finish_seek()

    def _handle_progress(self, source_id: str, local: float) -> None:
        with self._lock:
            if not self._is_current(source_id) or self._strategy is None:
                return
            self._finish_seek()
            current = self._strategy.to_global(self._index, local)
            self._state.update(PlayerEvent.POSITION_CHANGED, current_time=current)

    def _handle_buffer(self, source_id: str, local_end: float) -> None:
        with self._lock:
            if not self._is_current(source_id) or self._strategy is None:
                return
            buffered = min(self._strategy.to_global(self._index, local_end), self._strategy.duration)
            self._state.update(PlayerEvent.BUFFER_CHANGED, buffered_time=buffered)

    def _handle_finished(self, source_id: str) -> None:
        with self._lock:
            strategy = self._strategy
            if not self._is_current(source_id) or strategy is None:
                return
            next_index = strategy.advance_on_end(self._index)
            if next_index is None:
                self._source_id = None
                self._attached_ready = False
                self._status = DriverState.ENDED
                self._play_when_ready = False
                end = strategy.to_global(self._index, strategy.segment(self._index).duration)
                self._state.update(
                    PlayerEvent.ENDED,
                    is_playing=False,
                    current_time=min(end, strategy.duration),
                )
                logger.info("Driver: reached the end of the book")
                return
            logger.debug("Driver: segment %d ended, continuing with %d", self._index, next_index)
            self._play_when_ready = True
            self._status = DriverState.PLAYING
            self._attach(next_index, 0.0)

    def _handle_error(self, source_id: str, message: str) -> None:
        with self._lock:
            if not self._is_current(source_id):
                return
            self._fail(PlaybackError(message or "Audio output failed"))
