"""Bridge to the host's system-wide media controls."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Protocol

from shelfcast.core.models import PlaybackSession
from shelfcast.core.state import PlayerEvent, PlayerState


logger = logging.getLogger(__name__)

ACTION_PLAY = "play"
ACTION_PAUSE = "pause"
ACTION_SEEK_BACKWARD = "seekbackward"
ACTION_SEEK_FORWARD = "seekforward"


class MediaControls(Protocol):
    """Host integration (OS media keys, lock screen, notification area)."""

    def set_metadata(self, title: str, author: str, artwork_url: Optional[str]) -> None: ...

    def set_action_handler(self, action: str, handler: Optional[Callable[[], None]]) -> None: ...

    def set_playback_state(self, playing: bool) -> None: ...


class MediaSessionBridge:
    """Publishes now-playing details and routes host actions back to the engine.

    Purely presentational: failures of the host are logged and ignored.
    """

    def __init__(
        self,
        controls: MediaControls,
        state: PlayerState,
        *,
        play: Callable[[], None],
        pause: Callable[[], None],
        seek_relative: Callable[[float], None],
        seek_back: float = 10.0,
        seek_forward: float = 30.0,
    ) -> None:
        self._controls = controls
        self._state = state
        self._handlers: Dict[str, Callable[[], None]] = {
            ACTION_PLAY: play,
            ACTION_PAUSE: pause,
            ACTION_SEEK_BACKWARD: lambda: seek_relative(-seek_back),
            ACTION_SEEK_FORWARD: lambda: seek_relative(seek_forward),
        }
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._published_playing: Optional[bool] = None

    def attach(self) -> None:
        if self._unsubscribe is not None:
            return
        for action, handler in self._handlers.items():
            self._call("set_action_handler", action, handler)
        self._unsubscribe = self._state.subscribe(self._on_state)

    def publish(self, session: PlaybackSession, artwork_url: Optional[str]) -> None:
        self._call(
            "set_metadata",
            session.display_title or session.item.title,
            session.display_author or session.item.author,
            artwork_url,
        )

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for action in self._handlers:
            self._call("set_action_handler", action, None)
        self._published_playing = None

    def _on_state(self, event: PlayerEvent, state: PlayerState) -> None:
        if event is PlayerEvent.POSITION_CHANGED or event is PlayerEvent.BUFFER_CHANGED:
            return
        if state.is_playing == self._published_playing:
            return
        self._published_playing = state.is_playing
        self._call("set_playback_state", state.is_playing)

    def _call(self, method: str, *args) -> None:
        try:
            getattr(self._controls, method)(*args)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Media controls %s failed: %s", method, exc)
