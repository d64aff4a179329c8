"""Observable player state shared by the playback components."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Callable, List, Optional

from shelfcast.core.errors import ShelfcastError


logger = logging.getLogger(__name__)


class PlayerEvent(Enum):
    POSITION_CHANGED = "positionChanged"
    BUFFER_CHANGED = "bufferChanged"
    ENDED = "ended"
    ERROR = "error"
    SESSION_OPENED = "sessionOpened"
    SESSION_CLOSED = "sessionClosed"
    PLAYBACK_CHANGED = "playbackChanged"
    LOADING_CHANGED = "loadingChanged"
    SLEEP_TIMER_CHANGED = "sleepTimerChanged"


class SleepMode(Enum):
    OFF = "off"
    MINUTES = "minutes"
    CHAPTERS = "chapters"


StateListener = Callable[[PlayerEvent, "PlayerState"], None]


@dataclass
class PlayerState:
    """The only externally observable record of the engine.

    Writes go through :meth:`update`, which dispatches to listeners before
    returning so observers never see a stale copy.
    """

    is_playing: bool = False
    current_time: float = 0.0
    duration: float = 0.0
    buffered_time: float = 0.0
    playback_rate: float = 1.0
    preserves_pitch: bool = True
    is_loading: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    session_id: Optional[str] = None
    item_id: Optional[str] = None
    is_streaming: bool = False
    is_offline: bool = False
    sleep_mode: SleepMode = SleepMode.OFF
    sleep_chapters_remaining: int = 0
    sleep_deadline: Optional[float] = None
    _listeners: List[StateListener] = field(default_factory=list, repr=False, compare=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def update(self, event: PlayerEvent, **values) -> None:
        with self._lock:
            for name, value in values.items():
                if name.startswith("_") or not hasattr(self, name):
                    raise AttributeError(f"PlayerState has no field {name!r}")
                setattr(self, name, value)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, self)
            except Exception:  # pylint: disable=broad-except
                logger.exception("PlayerState listener failed for %s", event.value)

    def set_error(self, exc: BaseException | str) -> None:
        if isinstance(exc, ShelfcastError):
            message, kind = str(exc) or exc.__class__.__name__, exc.kind
        elif isinstance(exc, BaseException):
            message, kind = str(exc) or exc.__class__.__name__, "error"
        else:
            message, kind = str(exc), "error"
        self.update(
            PlayerEvent.ERROR,
            error=message,
            error_kind=kind,
            is_loading=False,
            is_playing=False,
        )

    def clear_error(self) -> None:
        if self.error is None and self.error_kind is None:
            return
        self.update(PlayerEvent.ERROR, error=None, error_kind=None)

    def snapshot(self) -> "PlayerState":
        with self._lock:
            values = {
                item.name: copy.copy(getattr(self, item.name))
                for item in fields(self)
                if not item.name.startswith("_")
            }
        return PlayerState(**values)
