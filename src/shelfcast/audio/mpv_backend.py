"""Audio output backed by libmpv (python-mpv).

mpv demuxes HLS manifests itself, so the continuous transcoded stream and the
direct-play files go through the same output.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, List, Optional

from shelfcast.audio.types import (
    AudioOutput,
    ErrorCallback,
    FinishedCallback,
    ProgressCallback,
    ReadyCallback,
)
from shelfcast.core.config.defaults import DEFAULT_MIME_TYPES
from shelfcast.core.errors import PlaybackError


logger = logging.getLogger(__name__)


def _load_mpv():
    try:
        import mpv  # type: ignore
    except (ImportError, OSError) as exc:
        raise PlaybackError(f"libmpv is not available: {exc}") from exc
    return mpv


def _log_mpv(level: str, prefix: str, text: str) -> None:
    if level in ("fatal", "error"):
        logger.warning("mpv[%s]: %s", prefix, text.strip())
    else:
        logger.debug("mpv[%s]: %s", prefix, text.strip())


class MpvOutput:
    """`AudioOutput` implementation driving one libmpv instance."""

    def __init__(self, *, network_timeout: float = 10.0) -> None:
        mpv = _load_mpv()
        self._mpv = mpv.MPV(
            log_handler=_log_mpv,
            loglevel="warn",
            video=False,
            ytdl=False,
            cache=True,
            network_timeout=network_timeout,
            keep_open=False,
        )
        self._lock = threading.Lock()
        self._source_id: Optional[str] = None
        self._pending_start: float = 0.0
        self._on_ready: Optional[ReadyCallback] = None
        self._on_progress: Optional[ProgressCallback] = None
        self._on_buffer: Optional[ProgressCallback] = None
        self._on_finished: Optional[FinishedCallback] = None
        self._on_error: Optional[ErrorCallback] = None

        self._mpv.observe_property("time-pos", self._handle_time_pos)
        self._mpv.observe_property("demuxer-cache-time", self._handle_cache_time)
        self._file_loaded = mpv.MpvEventID.FILE_LOADED
        self._end_file = mpv.MpvEventID.END_FILE
        self._end_eof = mpv.MpvEventEndFile.EOF
        self._end_error = mpv.MpvEventEndFile.ERROR
        self._terminated = False
        self._mpv.register_event_callback(self._handle_event)

    def open(
        self,
        source_id: str,
        source: str,
        *,
        start_seconds: float = 0.0,
        duration_hint: Optional[float] = None,
        streaming: bool = False,
    ) -> None:
        del duration_hint  # mpv reads the real length from the container
        with self._lock:
            self._source_id = source_id
            self._pending_start = max(0.0, start_seconds)
        self._mpv.pause = True
        options = {"start": f"{self._pending_start:.3f}"}
        if streaming:
            options["demuxer-lavf-o"] = "live_start_index=0"
        logger.debug("mpv: loading %s (%s) at %.2fs", source_id, "hls" if streaming else "file", start_seconds)
        self._mpv.loadfile(source, "replace", **options)

    def play(self) -> None:
        self._mpv.pause = False

    def pause(self) -> None:
        self._mpv.pause = True

    def seek(self, seconds: float) -> None:
        try:
            self._mpv.seek(max(0.0, seconds), reference="absolute", precision="exact")
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("mpv: seek to %.2fs failed: %s", seconds, exc)

    def stop(self) -> None:
        with self._lock:
            self._source_id = None
        try:
            self._mpv.command("stop")
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("mpv: stop failed: %s", exc)

    def release(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        self.stop()
        try:
            self._mpv.terminate()
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("mpv: terminate failed: %s", exc)

    def is_active(self) -> bool:
        return self._source_id is not None

    def set_rate(self, rate: float) -> None:
        self._mpv.speed = rate

    def set_preserves_pitch(self, enabled: bool) -> None:
        self._mpv["audio-pitch-correction"] = bool(enabled)

    def supported_mime_types(self) -> List[str]:
        return list(DEFAULT_MIME_TYPES)

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

    def _current(self) -> Optional[str]:
        with self._lock:
            return self._source_id

    def _handle_time_pos(self, _name: str, value: Any) -> None:
        source_id = self._current()
        if source_id is None or value is None or not self._on_progress:
            return
        self._on_progress(source_id, float(value))

    def _handle_cache_time(self, _name: str, value: Any) -> None:
        source_id = self._current()
        if source_id is None or value is None or not self._on_buffer:
            return
        self._on_buffer(source_id, float(value))

    def _handle_event(self, event: Any) -> None:
        """Translate `MpvEvent` structures from the mpv event thread.

        End-file events caused by `stop` or by replacing the file carry
        neither the EOF nor the ERROR reason and are ignored.
        """
        event_id = event.event_id.value
        if event_id != self._file_loaded and event_id != self._end_file:
            return
        source_id = self._current()
        if source_id is None:
            return
        try:
            if event_id == self._file_loaded:
                if self._on_ready:
                    self._on_ready(source_id)
                return
            reason = event.data.reason
            if reason == self._end_eof:
                if self._on_finished:
                    self._on_finished(source_id)
            elif reason == self._end_error and self._on_error:
                self._on_error(source_id, "Media could not be decoded or fetched")
        except Exception:  # pylint: disable=broad-except
            logger.exception("mpv: event handler failed for event %s", event_id)


class MpvBackendProvider:
    name = "mpv"

    def __init__(self, *, network_timeout: float = 10.0) -> None:
        self._network_timeout = network_timeout

    def is_available(self) -> bool:
        try:
            _load_mpv()
        except PlaybackError as exc:
            logger.debug("mpv backend unavailable: %s", exc)
            return False
        return True

    def create_output(self) -> AudioOutput:
        return MpvOutput(network_timeout=self._network_timeout)
