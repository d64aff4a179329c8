"""Lookup of locally cached (downloaded) items."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import mutagen

from shelfcast.core.models import LibraryItem
from shelfcast.remote.protocols import LocalSource


logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = (".m4b", ".m4a", ".mp3", ".flac", ".ogg", ".opus", ".aac")


def probe_duration(path: Path) -> float:
    try:
        audio = mutagen.File(path)
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Unable to read audio metadata from %s: %s", path, exc)
        return 0.0
    info = getattr(audio, "info", None)
    try:
        return max(0.0, float(getattr(info, "length", 0.0) or 0.0))
    except (TypeError, ValueError):
        return 0.0


class CachedSourceResolver:
    """Finds a downloaded copy under ``<cache_dir>/<item_id>/``."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)

    def find(self, item: LibraryItem) -> Optional[LocalSource]:
        folder = self.cache_dir / item.id
        if not folder.is_dir():
            return None
        candidates = sorted(
            path for path in folder.iterdir() if path.is_file() and path.suffix.lower() in AUDIO_EXTENSIONS
        )
        for path in candidates:
            if path.stat().st_size == 0:
                logger.warning("Skipping empty cached file %s", path)
                continue
            duration = item.duration if item.duration > 0 else probe_duration(path)
            return LocalSource(path=path, duration=duration)
        return None
