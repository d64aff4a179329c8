"""Sleep timer: pause after a wall-clock delay or at a chapter boundary."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from shelfcast.core.chapters import ChapterIndex
from shelfcast.core.state import PlayerEvent, PlayerState, SleepMode


logger = logging.getLogger(__name__)

DEFAULT_GUARD_SECONDS = 0.5


class SleepTimer:
    """Decides when to stop playback.

    Minutes mode is wall-clock and keeps counting while paused. Chapters mode
    anchors a stop boundary ``remaining - 1`` chapters after the one playing
    when it is set; the stop fires up to ``guard_seconds`` before that
    boundary so tick granularity cannot spill into the next chapter.
    """

    def __init__(
        self,
        state: PlayerState,
        pause: Callable[[], None],
        *,
        guard_seconds: float = DEFAULT_GUARD_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._state = state
        self._pause = pause
        self._guard = min(max(0.0, guard_seconds), DEFAULT_GUARD_SECONDS)
        self._clock = clock
        self._index: Optional[ChapterIndex] = None
        self._duration: float = 0.0
        self._mode = SleepMode.OFF
        self._deadline: Optional[float] = None
        self._target_chapter: Optional[int] = None
        self._boundary: Optional[float] = None
        self._remaining = 0

    @property
    def mode(self) -> SleepMode:
        return self._mode

    @property
    def boundary(self) -> Optional[float]:
        return self._boundary

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def set_chapter_index(self, index: Optional[ChapterIndex], duration: float) -> None:
        self._index = index
        self._duration = duration

    def reset(self) -> None:
        self._mode = SleepMode.OFF
        self._deadline = None
        self._target_chapter = None
        self._boundary = None
        self._remaining = 0
        self._publish()

    def set_minutes(self, minutes: float) -> None:
        if minutes <= 0:
            self.reset()
            return
        self._target_chapter = None
        self._boundary = None
        self._remaining = 0
        self._deadline = self._clock() + minutes * 60.0
        self._mode = SleepMode.MINUTES
        logger.info("Sleep timer: stopping in %.1f min", minutes)
        self._publish()

    def set_chapters(self, count: int, position: float) -> None:
        count = int(count)
        if count <= 0:
            self.reset()
            return
        self._deadline = None
        self._mode = SleepMode.CHAPTERS
        self._anchor(count, position)
        logger.info("Sleep timer: stopping after %d chapter(s) at %.1fs", count, self._boundary or 0.0)
        self._publish()

    def check(self, now: Optional[float] = None) -> bool:
        """Low-frequency tick for minutes mode. Returns True when it fired."""
        if self._mode is not SleepMode.MINUTES or self._deadline is None:
            return False
        now = self._clock() if now is None else now
        if now >= self._deadline:
            self._fire("deadline reached")
            return True
        return False

    def on_position(self, position: float) -> bool:
        """Feed a book-global position. Returns True when it fired."""
        if self._mode is not SleepMode.CHAPTERS or self._boundary is None:
            return False
        if position >= self._boundary - self._guard:
            self._fire(f"chapter boundary {self._boundary:.1f}s")
            return True
        remaining = self._remaining_at(position)
        if remaining != self._remaining:
            self._remaining = remaining
            self._publish()
        return False

    def on_seek(self, position: float) -> None:
        """Re-anchor after an explicit relocation, keeping the remaining count."""
        if self._mode is not SleepMode.CHAPTERS:
            return
        self._anchor(max(1, self._remaining), position)
        self._publish()

    def _anchor(self, count: int, position: float) -> None:
        index = self._index
        current = self._current_chapter(position)
        if index is None or current is None:
            self._target_chapter = None
            self._boundary = self._duration
            self._remaining = count
            return
        self._target_chapter = min(current + count - 1, len(index) - 1)
        self._boundary = index.end_of(self._target_chapter)
        self._remaining = self._target_chapter - current + 1

    def _remaining_at(self, position: float) -> int:
        if self._index is None or self._target_chapter is None:
            return self._remaining
        current = self._current_chapter(position)
        if current is None:
            return self._remaining
        return max(1, self._target_chapter - current + 1)

    def _current_chapter(self, position: float) -> Optional[int]:
        index = self._index
        if index is None:
            return None
        current = index.locate(position)
        if current is None and len(index) and 0 <= position < index[0].start:
            # a lead-in before the first chapter counts toward chapter one
            return 0
        return current

    def _fire(self, reason: str) -> None:
        logger.info("Sleep timer fired (%s)", reason)
        self._pause()
        self.reset()

    def _publish(self) -> None:
        self._state.update(
            PlayerEvent.SLEEP_TIMER_CHANGED,
            sleep_mode=self._mode,
            sleep_chapters_remaining=self._remaining if self._mode is SleepMode.CHAPTERS else 0,
            sleep_deadline=self._deadline,
        )
