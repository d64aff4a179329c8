"""Player engine: the single owner of one playback lifetime."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, List, Optional

from shelfcast.audio.types import AudioOutput
from shelfcast.core.chapters import ChapterIndex
from shelfcast.core.config import EngineSettings
from shelfcast.core.errors import ResolutionError, ShelfcastError
from shelfcast.core.models import AudioTrack, Credentials, DeviceInfo, LibraryItem, PlaybackSession, ProgressRecord
from shelfcast.core.state import PlayerEvent, PlayerState
from shelfcast.playback.driver import PlaybackDriver
from shelfcast.playback.media_session import MediaControls, MediaSessionBridge
from shelfcast.playback.resolver import TrackResolver, build_content_url, build_cover_url
from shelfcast.playback.sleep_timer import SleepTimer
from shelfcast.playback.synchronizer import SessionSynchronizer
from shelfcast.playback.tasks import BackgroundDispatcher, RepeatingTimer
from shelfcast.remote.progress import ProgressFeed
from shelfcast.remote.protocols import LocalSourceResolver, SessionService


logger = logging.getLogger(__name__)

_PLAYING_EVENTS = (
    PlayerEvent.PLAYBACK_CHANGED,
    PlayerEvent.LOADING_CHANGED,
    PlayerEvent.ENDED,
    PlayerEvent.ERROR,
)


class PlayerEngine:
    """Wires resolver, driver, sleep timer and synchronizer around one state.

    All entry points and output callbacks run under one re-entrant lock, so
    the components observe single-threaded semantics. Only session
    negotiation in :meth:`load` runs outside the lock.
    """

    def __init__(
        self,
        service: SessionService,
        output: AudioOutput,
        *,
        settings: Optional[EngineSettings] = None,
        device: Optional[DeviceInfo] = None,
        local_sources: Optional[LocalSourceResolver] = None,
        progress_feed: Optional[ProgressFeed] = None,
        dispatcher: Optional[BackgroundDispatcher] = None,
        media_controls: Optional[MediaControls] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.state = PlayerState()
        self._lock = threading.RLock()
        self._clock = clock
        self._wall_clock = wall_clock
        self._service = service
        self._dispatcher = dispatcher or BackgroundDispatcher()
        self._credentials: Optional[Credentials] = None
        self._session: Optional[PlaybackSession] = None
        self._session_opened_at = 0
        self._chapters: Optional[ChapterIndex] = None
        self._load_generation = 0
        self._confirmed_generation = 0
        self._orphans: List[PlaybackSession] = []
        self._muted_position = False
        self._destroyed = False
        self.sync_failures = 0

        device = device or DeviceInfo(device_id=uuid.uuid4().hex[:12])
        supported = output.supported_mime_types()
        mime_types = [mime for mime in self.settings.mime_types if mime in supported] or list(
            self.settings.mime_types
        )
        self._resolver = TrackResolver(service, device, mime_types, local_sources=local_sources)
        self._driver = PlaybackDriver(output, self.state, self._url_for, lock=self._lock)
        self._sleep_timer = SleepTimer(
            self.state,
            self.pause,
            guard_seconds=self.settings.sleep_guard,
            clock=wall_clock,
        )
        self._synchronizer = SessionSynchronizer(
            service,
            self._dispatcher,
            self.state,
            clock=clock,
            flush_threshold=self.settings.heartbeat_threshold,
        )
        self._timer = RepeatingTimer(self.settings.tick_interval, self.tick)
        self._unsubscribe_state = self.state.subscribe(self._on_state)
        self._progress_feed = progress_feed
        self._unsubscribe_feed: Optional[Callable[[], None]] = None
        if progress_feed is not None:
            self._unsubscribe_feed = progress_feed.subscribe(self._on_remote_progress)
        self._media: Optional[MediaSessionBridge] = None
        if media_controls is not None:
            self._media = MediaSessionBridge(
                media_controls,
                self.state,
                play=self.play,
                pause=self.pause,
                seek_relative=self.seek_relative,
                seek_back=self.settings.seek_back,
                seek_forward=self.settings.seek_forward,
            )
            self._media.attach()

        self._driver.set_rate(self.settings.default_rate)
        self._driver.set_preserves_pitch(self.settings.preserves_pitch)

    # --- introspection ---
    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def chapters(self) -> Optional[ChapterIndex]:
        return self._chapters

    @property
    def driver(self) -> PlaybackDriver:
        return self._driver

    @property
    def sleep_timer(self) -> SleepTimer:
        return self._sleep_timer

    @property
    def synchronizer(self) -> SessionSynchronizer:
        return self._synchronizer

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # --- loading ---
    def load(
        self,
        item: LibraryItem,
        credentials: Credentials,
        start_at: Optional[float] = None,
        *,
        autoplay: bool = True,
    ) -> bool:
        """Resolve ``item`` and start playing it. Returns False when the load
        failed or was superseded; failures are reported on :attr:`state`."""
        with self._lock:
            if self._destroyed:
                logger.warning("Engine: load(%s) after destroy ignored", item.id)
                return False
            self._load_generation += 1
            generation = self._load_generation
            self._credentials = credentials
            self._sleep_timer.reset()
            self._driver.unload()
            self.state.update(PlayerEvent.LOADING_CHANGED, is_loading=True, is_playing=False, item_id=item.id)
        logger.info("Engine: loading %s (generation %d)", item.id, generation)

        try:
            session = self._resolver.resolve(item)
        except ShelfcastError as exc:
            self._load_failed(generation, exc)
            return False
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Engine: resolving %s raised unexpectedly", item.id)
            self._load_failed(generation, ResolutionError(f"Could not resolve {item.id}: {exc}"))
            return False

        with self._lock:
            if generation != self._load_generation or self._destroyed:
                self._park_superseded(generation, session)
                return False
            self._confirmed_generation = generation
            orphans, self._orphans = self._orphans, []
            self._synchronizer.close()
            self._activate(session, start_at, autoplay)
        for orphan in orphans:
            self._synchronizer.close_superseded(orphan)
        return True

    def _activate(self, session: PlaybackSession, start_at: Optional[float], autoplay: bool) -> None:
        self._session = session
        self._session_opened_at = int(self._wall_clock() * 1000)
        self._chapters = ChapterIndex(session.item.chapters, session.duration)
        self._sleep_timer.set_chapter_index(self._chapters, session.duration)
        self.state.clear_error()
        self.state.update(
            PlayerEvent.LOADING_CHANGED,
            item_id=session.item.id,
            is_offline=session.is_offline,
        )
        if session.id is not None:
            self._synchronizer.attach(session)
        start = session.current_time if start_at is None else start_at
        logger.info(
            "Engine: playing %s (%s) from %.1fs",
            session.item.id,
            "offline" if session.is_offline else f"session {session.id}",
            start,
        )
        self._driver.load(session, start, autoplay=autoplay)
        if self._media is not None:
            artwork = None
            if not session.is_offline and self._credentials is not None and session.item.cover_path:
                artwork = build_cover_url(self._credentials, session.item.id)
            self._media.publish(session, artwork)

    def _load_failed(self, generation: int, exc: ShelfcastError) -> None:
        with self._lock:
            if generation != self._load_generation or self._destroyed:
                logger.info("Engine: superseded load failed: %s", exc)
                return
            logger.error("Engine: load failed: %s", exc)
            self._confirmed_generation = generation
            orphans, self._orphans = self._orphans, []
            self._synchronizer.close()
            self._session = None
            self.state.set_error(exc)
        for orphan in orphans:
            self._synchronizer.close_superseded(orphan)

    def _park_superseded(self, generation: int, session: PlaybackSession) -> None:
        logger.info("Engine: load %d superseded, abandoning session %s", generation, session.id)
        if self._destroyed or self._confirmed_generation > generation:
            self._synchronizer.close_superseded(session)
        else:
            self._orphans.append(session)

    def _url_for(self, track: AudioTrack) -> str:
        session = self._session
        if session is not None and session.is_offline:
            return track.content_url
        if self._credentials is None:
            raise ResolutionError("No credentials for media server")
        return build_content_url(self._credentials, track.content_url)

    # --- transport ---
    def play(self) -> None:
        with self._lock:
            if not self._destroyed:
                self._driver.play()

    def pause(self) -> None:
        with self._lock:
            if not self._destroyed:
                self._driver.pause()

    def toggle(self) -> None:
        with self._lock:
            if not self._destroyed:
                self._driver.toggle()

    def seek(self, target: float) -> None:
        with self._lock:
            if self._destroyed:
                return
            self._muted_position = True
            try:
                self._driver.seek(target)
            finally:
                self._muted_position = False
            self._sleep_timer.on_seek(self.state.current_time)

    def seek_relative(self, delta: float) -> None:
        with self._lock:
            self.seek(self.state.current_time + delta)

    def skip_back(self) -> None:
        self.seek_relative(-self.settings.seek_back)

    def skip_forward(self) -> None:
        self.seek_relative(self.settings.seek_forward)

    def set_rate(self, rate: float) -> float:
        with self._lock:
            return self._driver.set_rate(rate)

    def set_preserves_pitch(self, enabled: bool) -> None:
        with self._lock:
            self._driver.set_preserves_pitch(enabled)

    # --- sleep timer ---
    def set_sleep_minutes(self, minutes: float) -> None:
        with self._lock:
            self._sleep_timer.set_minutes(minutes)

    def set_sleep_chapters(self, count: int) -> None:
        with self._lock:
            self._sleep_timer.set_chapters(count, self.state.current_time)

    def clear_sleep_timer(self) -> None:
        with self._lock:
            self._sleep_timer.reset()

    # --- background ---
    def sync_now(self) -> bool:
        with self._lock:
            if self._destroyed:
                return False
            return self._synchronizer.flush(self._clock())

    def tick(self) -> None:
        """One cooperative tick: heartbeat accrual and the minutes sleep check."""
        with self._lock:
            if self._destroyed:
                return
            self._synchronizer.tick(self._clock())
            self._sleep_timer.check(self._wall_clock())
        for result in self._dispatcher.pop_results():
            if not result.ok:
                self.sync_failures += 1
                logger.debug("Engine: background %s failed: %s", result.name, result.error)

    def start(self) -> None:
        if not self._destroyed:
            self._timer.start()

    def destroy(self) -> None:
        """Flush, close the session and release the output. Idempotent."""
        # the tick thread and the output event thread both wait on the lock
        self._timer.cancel()
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            self._load_generation += 1
            logger.info("Engine: destroying")
            if self._unsubscribe_feed is not None:
                self._unsubscribe_feed()
                self._unsubscribe_feed = None
            self._synchronizer.close(self._clock())
            orphans, self._orphans = self._orphans, []
            self._driver.unload()
            if self._media is not None:
                self._media.detach()
            self._unsubscribe_state()
            self._session = None
        for orphan in orphans:
            self._synchronizer.close_superseded(orphan)
        self._driver.release()
        self._dispatcher.shutdown(self.settings.close_timeout)

    # --- listeners ---
    def _on_state(self, event: PlayerEvent, state: PlayerState) -> None:
        if event is PlayerEvent.POSITION_CHANGED:
            if not self._muted_position:
                self._sleep_timer.on_position(state.current_time)
            return
        if event in _PLAYING_EVENTS:
            self._synchronizer.note_playing(state.is_playing, self._clock())
        if event is PlayerEvent.ENDED:
            logger.info("Engine: item finished, closing session")
            self._sleep_timer.reset()
            self._synchronizer.close(self._clock())

    def _on_remote_progress(self, record: ProgressRecord) -> None:
        """Seek to progress pushed by another device for the active item.

        Pushes are applied only while neither playing nor loading, so another
        device cannot yank the position out from under a listener, and only
        when newer than the moment this session was opened.
        """
        with self._lock:
            session = self._session
            if self._destroyed or session is None or record.item_id != session.item.id:
                return
            if self.state.is_playing or self.state.is_loading:
                logger.debug("Engine: ignoring remote progress for %s while active", record.item_id)
                return
            if record.last_update <= self._session_opened_at:
                return
            logger.info("Engine: applying remote progress %.1fs for %s", record.current_time, record.item_id)
            self.seek(record.current_time)
