"""Data models shared by the playback engine and the remote client."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


HLS_MIME_TYPES = {"application/vnd.apple.mpegurl", "application/x-mpegurl"}


class DeliveryMode(Enum):
    CONTINUOUS = "continuous"
    SEGMENTED = "segmented"


class PlayMethod(Enum):
    DIRECTPLAY = 0
    DIRECTSTREAM = 1
    TRANSCODE = 2
    LOCAL = 3

    @classmethod
    def parse(cls, value: Any) -> "PlayMethod":
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.DIRECTPLAY


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Chapter:
    id: int
    start: float
    end: float
    title: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chapter":
        return cls(
            id=int(data.get("id", 0)),
            start=_float(data.get("start")),
            end=_float(data.get("end")),
            title=str(data.get("title") or ""),
        )


@dataclass(frozen=True)
class AudioFile:
    index: int
    duration: float
    ino: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AudioFile":
        return cls(
            index=int(data.get("index", 0)),
            duration=_float(data.get("duration")),
            ino=data.get("ino") or data.get("id"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class ItemMetadata:
    title: str = ""
    author_name: str = ""
    description: Optional[str] = None
    series_name: Optional[str] = None
    sequence: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemMetadata":
        return cls(
            title=str(data.get("title") or ""),
            author_name=str(data.get("authorName") or ""),
            description=data.get("description"),
            series_name=data.get("seriesName"),
            sequence=data.get("sequence"),
        )


@dataclass(frozen=True)
class ProgressRecord:
    item_id: str
    current_time: float
    duration: float = 0.0
    progress: float = 0.0
    is_finished: bool = False
    last_update: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressRecord":
        return cls(
            item_id=str(data.get("libraryItemId") or data.get("itemId") or ""),
            current_time=_float(data.get("currentTime")),
            duration=_float(data.get("duration")),
            progress=_float(data.get("progress")),
            is_finished=bool(data.get("isFinished", False)),
            last_update=int(_float(data.get("lastUpdate"))),
        )


@dataclass(frozen=True)
class LibraryItem:
    """Immutable snapshot of a catalog item supplied by the caller."""

    id: str
    duration: float
    chapters: Tuple[Chapter, ...] = ()
    audio_files: Tuple[AudioFile, ...] = ()
    metadata: ItemMetadata = field(default_factory=ItemMetadata)
    cover_path: Optional[str] = None
    user_progress: Optional[ProgressRecord] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LibraryItem":
        media = data.get("media") or {}
        progress = data.get("userProgress") or data.get("userMediaProgress")
        chapters = sorted(
            (Chapter.from_dict(raw) for raw in media.get("chapters") or []),
            key=lambda chapter: chapter.start,
        )
        return cls(
            id=str(data["id"]),
            duration=_float(media.get("duration")),
            chapters=tuple(chapters),
            audio_files=tuple(AudioFile.from_dict(raw) for raw in media.get("audioFiles") or []),
            metadata=ItemMetadata.from_dict(media.get("metadata") or {}),
            cover_path=media.get("coverPath"),
            user_progress=ProgressRecord.from_dict(progress) if progress else None,
        )

    @property
    def title(self) -> str:
        return self.metadata.title

    @property
    def author(self) -> str:
        return self.metadata.author_name

    @property
    def resume_time(self) -> float:
        if self.user_progress is None or self.user_progress.is_finished:
            return 0.0
        return self.user_progress.current_time

    def with_progress(self, record: ProgressRecord) -> "LibraryItem":
        """Return a copy carrying ``record``; the original is left untouched."""
        return replace(self, user_progress=record)


@dataclass(frozen=True)
class AudioTrack:
    index: int
    start_offset: float
    duration: float
    content_url: str
    mime_type: str = ""
    title: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AudioTrack":
        return cls(
            index=int(data.get("index", 0)),
            start_offset=_float(data.get("startOffset")),
            duration=_float(data.get("duration")),
            content_url=str(data.get("contentUrl") or ""),
            mime_type=str(data.get("mimeType") or ""),
            title=str(data.get("title") or ""),
        )

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.duration

    @property
    def is_manifest(self) -> bool:
        if self.mime_type.lower() in HLS_MIME_TYPES:
            return True
        return self.content_url.split("?", 1)[0].endswith(".m3u8")


@dataclass(frozen=True)
class PlaybackSession:
    """Descriptor of an opened playback session.

    ``id`` is ``None`` when the item plays from a locally cached copy and no
    remote session exists.
    """

    id: Optional[str]
    item: LibraryItem
    mode: DeliveryMode
    tracks: Tuple[AudioTrack, ...]
    current_time: float = 0.0
    display_title: str = ""
    display_author: str = ""
    play_method: PlayMethod = PlayMethod.DIRECTPLAY
    local_path: Optional[str] = None

    @property
    def duration(self) -> float:
        if self.item.duration > 0:
            return self.item.duration
        if not self.tracks:
            return 0.0
        return self.tracks[-1].end_offset

    @property
    def is_streaming(self) -> bool:
        return self.mode is DeliveryMode.CONTINUOUS

    @property
    def is_offline(self) -> bool:
        return self.local_path is not None


@dataclass
class Credentials:
    server_url: str
    token: str

    def rotate(self, token: str) -> None:
        self.token = token


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    client_name: str = "shelfcast"
    client_version: str = ""

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"clientName": self.client_name, "deviceId": self.device_id}
        if self.client_version:
            payload["clientVersion"] = self.client_version
        return payload


def parse_tracks(raw_tracks: List[Dict[str, Any]]) -> Tuple[AudioTrack, ...]:
    tracks = [AudioTrack.from_dict(raw) for raw in raw_tracks or []]
    tracks.sort(key=lambda track: (track.start_offset, track.index))
    return tuple(tracks)
