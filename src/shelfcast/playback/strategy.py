"""Delivery strategies translating between local and book-global time."""

from __future__ import annotations

from abc import ABC, abstractmethod
from bisect import bisect_right
from typing import Optional, Sequence, Tuple

from shelfcast.core.models import AudioTrack, PlaybackSession


class DeliveryStrategy(ABC):
    """Maps book-global time onto the segments actually loaded by the output."""

    streaming = False

    def __init__(self, tracks: Sequence[AudioTrack], duration: float) -> None:
        if not tracks:
            raise ValueError("A delivery strategy needs at least one track")
        self._tracks: Tuple[AudioTrack, ...] = tuple(tracks)
        self._duration = float(duration) if duration > 0 else self._tracks[-1].end_offset

    @property
    def duration(self) -> float:
        return self._duration

    def __len__(self) -> int:
        return len(self._tracks)

    def segment(self, index: int) -> AudioTrack:
        return self._tracks[index]

    def clamp(self, global_t: float) -> float:
        return min(max(0.0, global_t), self._duration)

    @abstractmethod
    def segment_for(self, global_t: float) -> Tuple[int, float]:
        """Return ``(segment index, local time)`` for a global position."""

    @abstractmethod
    def to_global(self, index: int, local_t: float) -> float: ...

    @abstractmethod
    def to_local(self, index: int, global_t: float) -> float: ...

    @abstractmethod
    def advance_on_end(self, index: int) -> Optional[int]:
        """Segment to continue with after ``index`` ends naturally, if any."""


class ContinuousStrategy(DeliveryStrategy):
    """One stream covering the whole book; local time equals global time."""

    streaming = True

    def segment_for(self, global_t: float) -> Tuple[int, float]:
        return 0, self.clamp(global_t)

    def to_global(self, index: int, local_t: float) -> float:
        return local_t

    def to_local(self, index: int, global_t: float) -> float:
        return global_t

    def advance_on_end(self, index: int) -> Optional[int]:
        return None


class SegmentedStrategy(DeliveryStrategy):
    """Discrete files laid end to end, each with its own time origin."""

    def __init__(self, tracks: Sequence[AudioTrack], duration: float) -> None:
        super().__init__(tracks, duration)
        self._starts = tuple(track.start_offset for track in self._tracks)

    def segment_for(self, global_t: float) -> Tuple[int, float]:
        target = self.clamp(global_t)
        index = max(0, bisect_right(self._starts, target) - 1)
        track = self._tracks[index]
        local = min(max(0.0, target - track.start_offset), track.duration)
        return index, local

    def to_global(self, index: int, local_t: float) -> float:
        return self._tracks[index].start_offset + local_t

    def to_local(self, index: int, global_t: float) -> float:
        return global_t - self._tracks[index].start_offset

    def advance_on_end(self, index: int) -> Optional[int]:
        if index + 1 < len(self._tracks):
            return index + 1
        return None


def strategy_for(session: PlaybackSession) -> DeliveryStrategy:
    if session.is_streaming:
        return ContinuousStrategy(session.tracks, session.duration)
    return SegmentedStrategy(session.tracks, session.duration)
