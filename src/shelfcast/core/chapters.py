"""Chapter lookup in book-global time."""

from __future__ import annotations

from bisect import bisect_right
from typing import Iterable, Optional, Sequence

from shelfcast.core.models import Chapter


class ChapterIndex:
    """Sorted, immutable view over the chapters of the active item.

    Intervals are half-open ``[start, next.start)``; the last chapter is closed
    at ``max(end, duration)`` so small end/duration mismatches stay covered.
    """

    def __init__(self, chapters: Iterable[Chapter], duration: float) -> None:
        ordered = sorted(chapters, key=lambda chapter: chapter.start)
        self._chapters: tuple[Chapter, ...] = tuple(ordered)
        self._starts: tuple[float, ...] = tuple(chapter.start for chapter in ordered)
        last_end = ordered[-1].end if ordered else 0.0
        self._duration = max(float(duration), last_end)

    def __len__(self) -> int:
        return len(self._chapters)

    def __getitem__(self, index: int) -> Chapter:
        return self._chapters[index]

    @property
    def chapters(self) -> Sequence[Chapter]:
        return self._chapters

    @property
    def duration(self) -> float:
        return self._duration

    def locate(self, t: float) -> Optional[int]:
        if not self._chapters or t < 0 or t > self._duration:
            return None
        if t < self._starts[0]:
            return None
        return bisect_right(self._starts, t) - 1

    def chapter_at(self, t: float) -> Optional[Chapter]:
        index = self.locate(t)
        return None if index is None else self._chapters[index]

    def end_of(self, index: int) -> float:
        if index >= len(self._chapters) - 1:
            return self._duration
        return self._starts[index + 1]

    def boundary_after(self, t: float, n: int) -> Optional[float]:
        """End time of the chapter ``n`` chapters ahead of the one holding ``t``."""
        current = self.locate(t)
        if current is None:
            return None
        target = min(current + max(0, int(n)), len(self._chapters) - 1)
        return self.end_of(target)
