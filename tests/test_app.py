
from types import SimpleNamespace

import pytest
import yaml

import shelfcast.app as app
from shelfcast.core.models import ProgressRecord
from shelfcast.core.state import PlayerState
from shelfcast.remote.progress import ProgressFeed


def test_configure_logging_writes_to_logs_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOGLEVEL", "debug")
    log_path = app._configure_logging("ERROR")

    assert log_path is not None
    assert log_path.parent == tmp_path / "logs"
    assert log_path.exists()


def test_parser_accepts_play_options():
    args = app._build_parser().parse_args(
        ["play", "li_1", "--server", "https://abs", "--token", "t", "--start", "12", "--sleep-chapters", "2"]
    )
    assert args.command == "play"
    assert args.item_id == "li_1"
    assert args.start == 12.0
    assert args.sleep_chapters == 2
    assert args.sleep_minutes is None

    with pytest.raises(SystemExit):
        app._build_parser().parse_args(["play", "li_1", "--sleep-chapters", "1", "--sleep-minutes", "5"])


def test_main_requires_server_and_token(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SHELFCAST_TOKEN", raising=False)
    code = app.main(["progress", "li_1", "--config", str(tmp_path / "settings.yaml")])
    assert code == 2
    assert "token" in capsys.readouterr().err


def test_progress_command_prints_record(tmp_path, monkeypatch, capsys):
    class DummyClient:
        closed = False

        def __init__(self, *args, **kwargs):
            pass

        def get_progress(self, item_id):
            return ProgressRecord(item_id=item_id, current_time=61.0, duration=120.0, progress=0.5)

        def close(self):
            DummyClient.closed = True

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(app, "ABSClient", DummyClient)
    code = app.main(
        ["progress", "li_1", "--server", "https://abs", "--token", "t", "--config", str(tmp_path / "s.yaml")]
    )

    assert code == 0
    assert "li_1: 61.0s / 120.0s (50.0%)" in capsys.readouterr().out
    assert DummyClient.closed


def test_play_uses_backend_override_without_saving_it(tmp_path, monkeypatch):
    seen = {}

    class DummyClient:
        def __init__(self, *args, **kwargs):
            pass

        def get_item(self, item_id):
            return SimpleNamespace(id=item_id, title="Book", author="Author")

        def close(self):
            pass

    class DummyAudio:
        def __init__(self, **kwargs):
            pass

        def create_output(self, name):
            seen["backend"] = name
            return object()

        def release_all(self):
            seen["released"] = True

    class DummyPush:
        def __init__(self, credentials, feed, **kwargs):
            seen["push_feed"] = feed
            self.closed = False

        def connect(self):
            return False

        def close(self):
            seen["push_closed"] = True

    class DummyEngine:
        def __init__(self, service, output, **kwargs):
            seen["engine_feed"] = kwargs["progress_feed"]
            self.state = PlayerState()

        def load(self, item, credentials, start_at):
            return False

        def destroy(self):
            seen["destroyed"] = True

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(app, "ABSClient", DummyClient)
    monkeypatch.setattr(app, "AudioEngine", DummyAudio)
    monkeypatch.setattr(app, "ProgressPushClient", DummyPush)
    monkeypatch.setattr(app, "PlayerEngine", DummyEngine)
    config_path = tmp_path / "settings.yaml"

    code = app.main(
        ["play", "li_1", "--backend", "mock", "--server", "https://abs", "--token", "t", "--config", str(config_path)]
    )

    assert code == 1
    assert seen["backend"] == "mock"
    assert isinstance(seen["engine_feed"], ProgressFeed)
    assert seen["push_feed"] is seen["engine_feed"]
    assert seen["destroyed"] and seen["push_closed"] and seen["released"]
    saved = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert saved["audio"]["backend"] == "mpv"
