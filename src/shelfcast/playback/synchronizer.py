"""Listening-time accrual and remote session lifecycle."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from shelfcast.core.errors import SyncError
from shelfcast.core.models import PlaybackSession
from shelfcast.core.state import PlayerEvent, PlayerState
from shelfcast.playback.tasks import BackgroundDispatcher
from shelfcast.remote.protocols import SessionService


logger = logging.getLogger(__name__)

DEFAULT_FLUSH_THRESHOLD = 10.0


class SessionSynchronizer:
    """Accrues wall-clock listening time and reports it to the media server.

    Time is accrued only while playback is running, measured between
    consecutive marks (ticks and play/pause transitions). A flush takes and
    resets the counter under the lock before the network call is queued, so
    time accrued meanwhile is left for the next cycle.
    """

    def __init__(
        self,
        service: SessionService,
        dispatcher: BackgroundDispatcher,
        state: PlayerState,
        *,
        clock: Callable[[], float] = time.monotonic,
        flush_threshold: float = DEFAULT_FLUSH_THRESHOLD,
    ) -> None:
        self._service = service
        self._dispatcher = dispatcher
        self._state = state
        self._clock = clock
        self._threshold = max(1.0, flush_threshold)
        self._lock = threading.Lock()
        self._session: Optional[PlaybackSession] = None
        self._accrued = 0.0
        self._playing = False
        self._last_mark: Optional[float] = None

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def session_id(self) -> Optional[str]:
        session = self._session
        return session.id if session is not None else None

    @property
    def accrued(self) -> float:
        with self._lock:
            return self._accrued

    @property
    def flush_threshold(self) -> float:
        return self._threshold

    def attach(self, session: PlaybackSession) -> None:
        with self._lock:
            self._session = session
            self._accrued = 0.0
            self._playing = False
            self._last_mark = None
        logger.info("Synchronizer: tracking session %s", session.id)
        self._state.update(PlayerEvent.SESSION_OPENED, session_id=session.id)

    def note_playing(self, is_playing: bool, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        with self._lock:
            self._accrue(now)
            self._playing = bool(is_playing)
            self._last_mark = now

    def tick(self, now: Optional[float] = None) -> bool:
        """Accrue and flush once the threshold is reached. Returns True on flush."""
        now = self._clock() if now is None else now
        with self._lock:
            session = self._session
            if session is None or session.id is None:
                return False
            self._accrue(now)
            if self._accrued < self._threshold:
                return False
            delta = self._take()
        self._send_sync(session.id, delta)
        return True

    def flush(self, now: Optional[float] = None) -> bool:
        """Report whatever has accrued right away."""
        now = self._clock() if now is None else now
        with self._lock:
            session = self._session
            if session is None or session.id is None:
                return False
            self._accrue(now)
            if self._accrued <= 0.0:
                return False
            delta = self._take()
        self._send_sync(session.id, delta)
        return True

    def close(self, now: Optional[float] = None) -> bool:
        """Flush the remainder and close the session. Safe to call repeatedly."""
        now = self._clock() if now is None else now
        with self._lock:
            session = self._session
            if session is None:
                return False
            self._accrue(now)
            delta = self._take()
            self._session = None
            self._playing = False
            self._last_mark = None
        if session.id is not None:
            current_time = self._state.current_time
            logger.info(
                "Synchronizer: closing session %s (listened %.1fs, at %.1fs)",
                session.id,
                delta,
                current_time,
            )
            self._submit_close(session.id, delta, current_time)
        self._state.update(PlayerEvent.SESSION_CLOSED, session_id=None)
        return True

    def close_superseded(self, session: PlaybackSession) -> None:
        """Close a session opened by a load that was overtaken by a newer one."""
        if session.id is None:
            return
        logger.info("Synchronizer: closing superseded session %s", session.id)
        self._submit_close(session.id, 0.0, session.current_time)

    def _submit_close(self, session_id: str, time_listened: float, current_time: float) -> None:
        if self._dispatcher.submit("close", self._service.close_session, session_id, time_listened, current_time):
            return
        # worker already stopped: the close is still owed to the server
        try:
            self._service.close_session(session_id, time_listened, current_time)
        except SyncError as exc:
            logger.warning("Synchronizer: closing %s failed: %s", session_id, exc)

    def _accrue(self, now: float) -> None:
        if self._playing and self._last_mark is not None:
            self._accrued += max(0.0, now - self._last_mark)
        self._last_mark = now

    def _take(self) -> float:
        delta, self._accrued = self._accrued, 0.0
        return delta

    def _send_sync(self, session_id: str, delta: float) -> None:
        current_time = self._state.current_time
        logger.debug("Synchronizer: sync %s +%.2fs at %.1fs", session_id, delta, current_time)
        self._dispatcher.submit(
            "sync",
            self._service.sync_session,
            session_id,
            delta,
            current_time,
            self._state.duration,
        )
