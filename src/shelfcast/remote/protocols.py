"""Interfaces of the remote collaborators consumed by the playback core."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from shelfcast.core.models import DeviceInfo, LibraryItem, ProgressRecord


class SessionService(Protocol):
    def open_session(
        self,
        item_id: str,
        device: DeviceInfo,
        mime_types: List[str],
    ) -> Dict[str, Any]: ...

    def sync_session(
        self,
        session_id: str,
        time_listened: float,
        current_time: float,
        duration: float,
    ) -> None: ...

    def close_session(
        self,
        session_id: str,
        time_listened: float,
        current_time: float,
    ) -> None: ...


class ProgressSource(Protocol):
    def get_progress(self, item_id: str) -> Optional[ProgressRecord]: ...


@dataclass(frozen=True)
class LocalSource:
    path: Path
    duration: float


class LocalSourceResolver(Protocol):
    def find(self, item: LibraryItem) -> Optional[LocalSource]: ...
