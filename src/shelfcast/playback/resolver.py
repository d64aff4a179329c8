"""Resolution of a catalog item into playable segments."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from shelfcast.core.errors import ResolutionError
from shelfcast.core.models import (
    AudioTrack,
    Chapter,
    Credentials,
    DeliveryMode,
    DeviceInfo,
    LibraryItem,
    PlaybackSession,
    PlayMethod,
    parse_tracks,
)
from shelfcast.remote.client import normalize_server_url
from shelfcast.remote.protocols import LocalSourceResolver, SessionService


logger = logging.getLogger(__name__)

CONTIGUITY_TOLERANCE = 0.01


def build_content_url(credentials: Credentials, relative_url: str) -> str:
    """Absolute, token-bearing URL for a server-relative content path.

    Reads the token at call time so a rotated credential is picked up by the
    next segment load.
    """
    if relative_url.startswith(("http://", "https://")):
        path_url = relative_url
    else:
        base = normalize_server_url(credentials.server_url)
        path = relative_url if relative_url.startswith("/") else f"/{relative_url}"
        if not path.startswith(("/api/", "/hls/")):
            path = f"/api{path}"
        path_url = f"{base}{path}"
    separator = "&" if "?" in path_url else "?"
    return f"{path_url}{separator}token={credentials.token}"


def build_cover_url(credentials: Credentials, item_id: str) -> str:
    return build_content_url(credentials, f"/api/items/{item_id}/cover")


def check_contiguous(tracks: Sequence[AudioTrack], tolerance: float = CONTIGUITY_TOLERANCE) -> None:
    for previous, current in zip(tracks, tracks[1:]):
        gap = current.start_offset - previous.end_offset
        if abs(gap) > tolerance:
            raise ResolutionError(
                f"Track {current.index} starts at {current.start_offset:.3f}s but track "
                f"{previous.index} ends at {previous.end_offset:.3f}s"
            )


class TrackResolver:
    """Turns an item into a `PlaybackSession` the driver can attach to."""

    def __init__(
        self,
        service: SessionService,
        device: DeviceInfo,
        supported_mime_types: Sequence[str],
        *,
        local_sources: Optional[LocalSourceResolver] = None,
    ) -> None:
        self._service = service
        self._device = device
        self._mime_types: List[str] = list(supported_mime_types)
        self._local_sources = local_sources

    @property
    def mime_types(self) -> List[str]:
        return list(self._mime_types)

    def resolve(self, item: LibraryItem) -> PlaybackSession:
        local = self._resolve_local(item)
        if local is not None:
            return local
        raw = self._service.open_session(item.id, self._device, self._mime_types)
        return self.session_from_payload(item, raw)

    def _resolve_local(self, item: LibraryItem) -> Optional[PlaybackSession]:
        if self._local_sources is None:
            return None
        source = self._local_sources.find(item)
        if source is None:
            return None
        logger.info("Playing %s from local cache %s", item.id, source.path)
        track = AudioTrack(
            index=1,
            start_offset=0.0,
            duration=source.duration,
            content_url=str(source.path),
            title=item.title,
        )
        return PlaybackSession(
            id=None,
            item=item,
            mode=DeliveryMode.CONTINUOUS,
            tracks=(track,),
            current_time=item.resume_time,
            display_title=item.title,
            display_author=item.author,
            play_method=PlayMethod.LOCAL,
            local_path=str(source.path),
        )

    def session_from_payload(self, item: LibraryItem, raw: Dict[str, Any]) -> PlaybackSession:
        tracks = parse_tracks(raw.get("audioTracks") or [])
        if not tracks:
            raise ResolutionError(f"Media server offered no playable tracks for {item.id}")
        play_method = PlayMethod.parse(raw.get("playMethod"))
        streaming = play_method is PlayMethod.TRANSCODE or any(track.is_manifest for track in tracks)

        session_item = item
        if isinstance(raw.get("libraryItem"), dict):
            try:
                session_item = LibraryItem.from_dict(raw["libraryItem"])
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("Ignoring malformed libraryItem in session payload: %s", exc)
        if not session_item.chapters and raw.get("chapters"):
            chapters = sorted((Chapter.from_dict(entry) for entry in raw["chapters"]), key=lambda chapter: chapter.start)
            session_item = replace(session_item, chapters=tuple(chapters))
        if session_item.user_progress is None and item.user_progress is not None:
            session_item = session_item.with_progress(item.user_progress)

        if streaming:
            tracks = (AudioTrack(
                index=tracks[0].index,
                start_offset=0.0,
                duration=session_item.duration or tracks[0].duration,
                content_url=tracks[0].content_url,
                mime_type=tracks[0].mime_type,
                title=tracks[0].title,
            ),)
            mode = DeliveryMode.CONTINUOUS
        else:
            check_contiguous(tracks)
            mode = DeliveryMode.SEGMENTED

        try:
            current_time = float(raw.get("currentTime") or 0.0)
        except (TypeError, ValueError):
            current_time = 0.0
        session = PlaybackSession(
            id=str(raw["id"]),
            item=session_item,
            mode=mode,
            tracks=tracks,
            current_time=current_time,
            display_title=str(raw.get("displayTitle") or session_item.title),
            display_author=str(raw.get("displayAuthor") or session_item.author),
            play_method=play_method,
        )
        logger.info(
            "Session %s: %s delivery, %d track(s), resume at %.1fs",
            session.id,
            mode.value,
            len(tracks),
            current_time,
        )
        return session
