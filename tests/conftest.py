from __future__ import annotations

import pytest

from fakes import DummyDispatcher, DummyService, FakeClock
from shelfcast.audio.mock_backend import MockOutput
from shelfcast.core.config import EngineSettings
from shelfcast.core.models import Credentials, DeviceInfo
from shelfcast.playback.engine import PlayerEngine


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeClock:
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def service() -> DummyService:
    return DummyService()


@pytest.fixture
def dispatcher() -> DummyDispatcher:
    return DummyDispatcher()


@pytest.fixture
def output() -> MockOutput:
    return MockOutput()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(server_url="https://abs.example.com", token="tok-1")


@pytest.fixture
def engine(service, output, dispatcher, clock, wall_clock):
    player = PlayerEngine(
        service,
        output,
        settings=EngineSettings(),
        device=DeviceInfo(device_id="dev-1"),
        dispatcher=dispatcher,
        clock=clock,
        wall_clock=wall_clock,
    )
    yield player
    player.destroy()
