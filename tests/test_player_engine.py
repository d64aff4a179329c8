import threading
from pathlib import Path

import pytest

from fakes import DummyDispatcher, make_item, segmented_payload, streaming_payload
from shelfcast.audio.mock_backend import MockOutput
from shelfcast.core.config import EngineSettings
from shelfcast.core.errors import ResolutionError, SessionError, SyncError
from shelfcast.core.models import DeviceInfo, ProgressRecord
from shelfcast.core.state import PlayerEvent, SleepMode
from shelfcast.playback.driver import DriverState
from shelfcast.playback.engine import PlayerEngine
from shelfcast.remote.progress import ProgressFeed
from shelfcast.remote.protocols import LocalSource


def _advance_until_paused(output, step=0.25, limit=4000):
    for _ in range(limit):
        if not output.playing:
            return
        output.advance(step)


def test_load_plays_first_segment_and_autoadvances(engine, service, output, credentials):
    service.add("book-1", segmented_payload(600, 600))
    assert engine.load(make_item(), credentials, 590) is True

    assert output.opened[0] == ("https://abs.example.com/api/s/item/file1.mp3?token=tok-1", 590)
    assert engine.state.session_id == engine.session.id
    assert engine.state.is_playing

    output.advance(10)
    assert output.opened[-1] == ("https://abs.example.com/api/s/item/file2.mp3?token=tok-1", 0)
    assert engine.state.is_playing
    assert not engine.state.is_loading


def test_resume_position_comes_from_session_when_not_overridden(engine, service, output, credentials):
    service.add("book-1", segmented_payload(600, 600, current_time=700))
    engine.load(make_item(), credentials)
    assert output.opened[0] == ("https://abs.example.com/api/s/item/file2.mp3?token=tok-1", 100)
    assert engine.state.current_time == 700


def test_rotated_token_is_used_for_the_next_segment(engine, service, output, credentials):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials, 595)
    credentials.rotate("tok-2")
    output.advance(5)
    assert output.opened[-1][0].endswith("file2.mp3?token=tok-2")


def test_second_load_during_first_supersedes_it(engine, service, output, credentials):
    service.add("book-1", segmented_payload(600, 600))
    service.add("book-2", streaming_payload(900))
    second = make_item("book-2", duration=900, chapters=3)
    triggered = []

    def on_open(item_id):
        if item_id == "book-1" and not triggered:
            triggered.append(item_id)
            assert engine.load(second, credentials) is True

    service.on_open = on_open
    assert engine.load(make_item(), credentials) is False

    assert engine.state.item_id == "book-2"
    assert engine.session.item.id == "book-2"
    assert engine.state.session_id.startswith("sess-book-2")
    assert len(service.closes) == 1
    assert service.closes[0][0].startswith("sess-book-1")
    assert service.closes[0][1] == 0.0
    assert all("/hls/" in source for source, _start in output.opened)
    assert engine.state.error is None


def test_superseded_load_finishing_first_is_closed_once_newer_confirms(engine, service, credentials):
    service.add("book-1", segmented_payload(600, 600))
    service.add("book-2", segmented_payload(300))
    entered = threading.Event()
    gate = threading.Event()
    first_result = []

    def on_open(item_id):
        if item_id == "book-1":
            entered.set()
            gate.wait(2.0)
        else:
            gate.set()
            worker.join(2.0)
            assert service.closes == []

    service.on_open = on_open
    worker = threading.Thread(target=lambda: first_result.append(engine.load(make_item(), credentials)))
    worker.start()
    assert entered.wait(2.0)

    assert engine.load(make_item("book-2", duration=300, chapters=1), credentials) is True
    worker.join(2.0)

    assert first_result == [False]
    assert [close[0][:11] for close in service.closes] == ["sess-book-1"]
    assert engine.state.session_id.startswith("sess-book-2")


def test_destroy_twice_closes_session_once(engine, service, output, dispatcher, credentials, clock):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials, 100)
    clock.advance(4.0)
    output.advance(4.0)

    engine.destroy()
    engine.destroy()

    assert len(service.closes) == 1
    session_id, listened, position = service.closes[0]
    assert listened == pytest.approx(4.0)
    assert position == pytest.approx(104.0)
    assert dispatcher.shutdown_calls == 1
    assert output.released
    assert engine.destroyed


def test_destroy_mid_load_still_closes_the_opened_session(engine, service, credentials):
    service.add("book-1", segmented_payload(600, 600))
    service.on_open = lambda _item_id: engine.destroy()

    assert engine.load(make_item(), credentials) is False
    assert len(service.closes) == 1
    assert engine.session is None
    assert engine.load(make_item(), credentials) is False


def test_heartbeat_flushes_every_ten_listened_seconds(engine, service, credentials, clock):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials)
    for _ in range(25):
        clock.advance(1.0)
        engine.tick()
    assert [round(call[1], 6) for call in service.syncs] == [10.0, 10.0]

    engine.pause()
    for _ in range(100):
        clock.advance(1.0)
        engine.tick()
    assert len(service.syncs) == 2

    engine.destroy()
    assert service.closes[0][1] == pytest.approx(5.0)


def test_sync_now_flushes_partial_time(engine, service, credentials, clock):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials)
    clock.advance(3.0)
    assert engine.sync_now() is True
    assert service.syncs[0][1] == pytest.approx(3.0)


def test_sync_failures_do_not_interrupt_playback(engine, service, credentials, clock):
    def failing_sync(*_args):
        raise SyncError("server down")

    service.sync_session = failing_sync
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials)
    clock.advance(10.0)
    engine.tick()

    assert engine.sync_failures == 1
    assert engine.state.error is None
    assert engine.state.is_playing


def test_switching_items_closes_previous_session_with_its_listened_time(engine, service, credentials, clock):
    service.add("book-1", segmented_payload(600, 600))
    service.add("book-2", segmented_payload(300))
    engine.load(make_item(), credentials)
    first_id = engine.session.id
    clock.advance(5.0)

    engine.load(make_item("book-2", duration=300, chapters=1), credentials)

    assert service.closes == [(first_id, pytest.approx(5.0), 0.0)]
    assert engine.state.session_id == engine.session.id != first_id


def test_end_of_book_closes_session(engine, service, output, credentials):
    service.add("book-1", segmented_payload(600, 600))
    events = []
    engine.state.subscribe(lambda event, _state: events.append(event))
    engine.load(make_item(), credentials, 1195)
    output.advance(5)

    assert PlayerEvent.ENDED in events
    assert PlayerEvent.SESSION_CLOSED in events
    assert len(service.closes) == 1
    assert engine.state.session_id is None
    engine.destroy()
    assert len(service.closes) == 1


def test_chapter_sleep_timer_pauses_at_end_of_current_chapter(engine, service, output, credentials):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials, 480)
    engine.set_sleep_chapters(1)

    _advance_until_paused(output)

    assert not engine.state.is_playing
    assert 719.5 <= engine.state.current_time <= 720.0
    assert engine.state.sleep_mode is SleepMode.OFF
    assert engine.driver.segment_index == 1
    assert engine.state.session_id is not None


def test_seek_reanchors_chapter_sleep_timer_without_firing(engine, service, credentials):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials, 10)
    engine.set_sleep_chapters(1)
    assert engine.sleep_timer.boundary == 240

    engine.seek(500)

    assert engine.state.is_playing
    assert engine.sleep_timer.boundary == 720
    assert engine.state.sleep_chapters_remaining == 1


def test_minutes_sleep_timer_counts_wall_clock_while_paused(engine, service, output, credentials, wall_clock):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials, autoplay=False)
    assert engine.driver.status is DriverState.READY
    engine.set_sleep_minutes(1)

    wall_clock.advance(30)
    engine.tick()
    assert engine.state.sleep_mode is SleepMode.MINUTES

    engine.play()
    wall_clock.advance(20)
    engine.tick()
    engine.pause()
    wall_clock.advance(9)
    engine.tick()
    assert engine.state.sleep_mode is SleepMode.MINUTES

    wall_clock.advance(1)
    engine.tick()
    assert engine.state.sleep_mode is SleepMode.OFF
    assert not output.playing


def test_minutes_sleep_timer_pauses_running_playback(engine, service, credentials, wall_clock):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials)
    engine.set_sleep_minutes(0.5)
    wall_clock.advance(30)
    engine.tick()
    assert not engine.state.is_playing
    assert engine.state.session_id is not None


def test_session_errors_surface_on_state_and_clear_on_next_load(engine, service, credentials):
    service.add("book-1", segmented_payload(600, 600))
    service.open_error = SessionError("declined")

    assert engine.load(make_item(), credentials) is False
    assert engine.state.error == "declined"
    assert engine.state.error_kind == "session"
    assert not engine.state.is_loading

    service.open_error = None
    assert engine.load(make_item(), credentials) is True
    assert engine.state.error is None
    assert engine.state.error_kind is None


def test_failed_load_closes_the_previous_session(engine, service, credentials):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials)
    first_id = engine.session.id
    service.open_error = ResolutionError("no route")

    engine.load(make_item("book-2"), credentials)

    assert [close[0] for close in service.closes] == [first_id]
    assert engine.state.session_id is None
    assert engine.state.error_kind == "resolution"


def test_unexpected_resolver_failure_becomes_resolution_error(engine, service, credentials):
    service.add("book-1", {"playMethod": 0, "audioTracks": [{"index": 1}], "id": None})
    service.open_error = RuntimeError("boom")
    assert engine.load(make_item(), credentials) is False
    assert engine.state.error_kind == "resolution"


def test_transport_controls(engine, service, output, credentials):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials, 100)

    engine.toggle()
    assert not engine.state.is_playing
    engine.toggle()
    assert engine.state.is_playing
    engine.skip_back()
    assert engine.state.current_time == 90
    engine.skip_forward()
    assert engine.state.current_time == 120
    assert engine.set_rate(2.0) == 2.0
    assert output.rate == 2.0
    engine.set_preserves_pitch(False)
    assert output.preserves_pitch is False
    assert engine.state.preserves_pitch is False


def _engine_with(service, output, clock, wall_clock, **kwargs):
    return PlayerEngine(
        service,
        output,
        settings=EngineSettings(),
        device=DeviceInfo(device_id="dev-1"),
        dispatcher=DummyDispatcher(),
        clock=clock,
        wall_clock=wall_clock,
        **kwargs,
    )


def test_remote_progress_applies_only_to_idle_active_item(service, credentials, clock, wall_clock):
    feed = ProgressFeed()
    output = MockOutput()
    engine = _engine_with(service, output, clock, wall_clock, progress_feed=feed)
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials, 100, autoplay=False)
    newer = int(wall_clock() * 1000) + 5000

    feed.publish(ProgressRecord(item_id="book-9", current_time=999, last_update=newer))
    assert engine.state.current_time == 100
    assert feed.get("book-9").current_time == 999

    feed.publish(ProgressRecord(item_id="book-1", current_time=50, last_update=newer - 10_000))
    assert engine.state.current_time == 100

    feed.publish(ProgressRecord(item_id="book-1", current_time=300, last_update=newer))
    assert engine.state.current_time == 300
    assert not engine.state.is_playing

    engine.play()
    feed.publish(ProgressRecord(item_id="book-1", current_time=800, last_update=newer + 1))
    assert engine.state.current_time == 300
    assert feed.get("book-1").current_time == 800
    engine.destroy()


def test_offline_copy_plays_without_remote_session(service, credentials, clock, wall_clock, tmp_path):
    class LocalSources:
        def find(self, item):
            return LocalSource(path=Path(tmp_path / "book.m4b"), duration=1200)

    output = MockOutput()
    engine = _engine_with(service, output, clock, wall_clock, local_sources=LocalSources())
    engine.load(make_item(), credentials)

    assert service.opened == []
    assert output.opened[0][0] == str(tmp_path / "book.m4b")
    assert engine.state.is_offline
    assert engine.state.session_id is None
    clock.advance(30)
    engine.tick()
    engine.destroy()
    assert service.syncs == []
    assert service.closes == []


class DummyControls:
    def __init__(self) -> None:
        self.metadata = None
        self.handlers = {}
        self.states = []

    def set_metadata(self, title, author, artwork_url):
        self.metadata = (title, author, artwork_url)

    def set_action_handler(self, action, handler):
        if handler is None:
            self.handlers.pop(action, None)
        else:
            self.handlers[action] = handler

    def set_playback_state(self, playing):
        self.states.append(playing)


def test_media_controls_follow_the_engine(service, credentials, clock, wall_clock):
    controls = DummyControls()
    engine = _engine_with(service, MockOutput(), clock, wall_clock, media_controls=controls)
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials, 100)

    assert controls.metadata == ("Title book-1", "Author", None)
    assert controls.states[-1] is True
    controls.handlers["seekbackward"]()
    assert engine.state.current_time == 90
    controls.handlers["seekforward"]()
    assert engine.state.current_time == 120
    controls.handlers["pause"]()
    assert controls.states[-1] is False

    engine.destroy()
    assert controls.handlers == {}


def test_tick_thread_starts_and_stops(engine, service, credentials):
    service.add("book-1", segmented_payload(600, 600))
    engine.load(make_item(), credentials)
    engine.start()
    engine.destroy()
    engine.tick()
    assert engine.destroyed


class EventThreadOutput(MockOutput):
    """Delivers progress from its own thread and joins that thread on release."""

    def __init__(self):
        super().__init__()
        self.armed = False
        self.event_thread = None
        self.joined_cleanly = None

    def stop(self):
        source_id = self.source_id
        if self.armed and source_id is not None and self.event_thread is None:
            self.event_thread = threading.Thread(target=self._on_progress, args=(source_id, 5.0), daemon=True)
            self.event_thread.start()
        super().stop()

    def release(self):
        if self.event_thread is not None:
            self.event_thread.join(2.0)
            self.joined_cleanly = not self.event_thread.is_alive()
        super().release()


def test_destroy_releases_output_after_dropping_the_lock(service, dispatcher, clock, wall_clock, credentials):
    output = EventThreadOutput()
    player = PlayerEngine(
        service,
        output,
        settings=EngineSettings(),
        device=DeviceInfo(device_id="dev-1"),
        dispatcher=dispatcher,
        clock=clock,
        wall_clock=wall_clock,
    )
    service.add("book-1", segmented_payload(600, 600))
    player.load(make_item(), credentials)
    output.armed = True

    player.destroy()

    assert output.event_thread is not None
    assert output.joined_cleanly is True
    assert output.released
    assert service.closes and service.closes[0][0] == "sess-book-1-1"
