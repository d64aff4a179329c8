"""Audio output type definitions.

Kept apart from `shelfcast.audio.engine` so the playback core can import the
shared protocol without pulling in heavyweight backends.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Protocol


ReadyCallback = Callable[[str], None]
ProgressCallback = Callable[[str, float], None]
FinishedCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]


class AudioOutput(Protocol):
    """A single platform audio output.

    Every callback carries the ``source_id`` passed to :meth:`open`, so the
    owner can drop late events from a source it has already replaced. Times
    are local to the opened source.
    """

    def open(
        self,
        source_id: str,
        source: str,
        *,
        start_seconds: float = 0.0,
        duration_hint: Optional[float] = None,
        streaming: bool = False,
    ) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def stop(self) -> None: ...

    def release(self) -> None: ...

    def is_active(self) -> bool: ...

    def set_rate(self, rate: float) -> None: ...

    def set_preserves_pitch(self, enabled: bool) -> None: ...

    def supported_mime_types(self) -> List[str]: ...

    def set_ready_callback(self, callback: Optional[ReadyCallback]) -> None: ...

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None: ...

    def set_buffer_callback(self, callback: Optional[ProgressCallback]) -> None: ...

    def set_finished_callback(self, callback: Optional[FinishedCallback]) -> None: ...

    def set_error_callback(self, callback: Optional[ErrorCallback]) -> None: ...


class OutputBackend(Protocol):
    name: str

    def is_available(self) -> bool: ...

    def create_output(self) -> AudioOutput: ...
