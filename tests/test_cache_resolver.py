from types import SimpleNamespace

import shelfcast.remote.cache as cache
from fakes import make_item
from shelfcast.remote.cache import CachedSourceResolver, probe_duration


def test_find_returns_first_non_empty_audio_file(tmp_path):
    folder = tmp_path / "book-1"
    folder.mkdir()
    (folder / "a-empty.mp3").write_bytes(b"")
    (folder / "b.m4b").write_bytes(b"audio")
    (folder / "cover.jpg").write_bytes(b"img")

    source = CachedSourceResolver(tmp_path).find(make_item())

    assert source.path == folder / "b.m4b"
    assert source.duration == 1200


def test_find_without_cached_copy(tmp_path):
    assert CachedSourceResolver(tmp_path).find(make_item()) is None
    (tmp_path / "book-1").mkdir()
    assert CachedSourceResolver(tmp_path).find(make_item()) is None


def test_duration_is_probed_when_item_has_none(tmp_path, monkeypatch):
    folder = tmp_path / "book-1"
    folder.mkdir()
    (folder / "book.mp3").write_bytes(b"audio")
    monkeypatch.setattr(cache.mutagen, "File", lambda path: SimpleNamespace(info=SimpleNamespace(length=4321.5)))

    source = CachedSourceResolver(tmp_path).find(make_item(duration=0, chapters=0))
    assert source.duration == 4321.5


def test_probe_duration_tolerates_unreadable_files(tmp_path, monkeypatch):
    def _broken(_path):
        raise OSError("corrupt")

    monkeypatch.setattr(cache.mutagen, "File", _broken)
    assert probe_duration(tmp_path / "x.mp3") == 0.0
    monkeypatch.setattr(cache.mutagen, "File", lambda _path: None)
    assert probe_duration(tmp_path / "x.mp3") == 0.0
