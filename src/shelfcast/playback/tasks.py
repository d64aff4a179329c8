"""Background worker and periodic timer used by the engine.

Network calls run on a dedicated worker thread so the playback path never
waits on the media server; outcomes come back over a result queue.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from shelfcast.core.errors import SyncError


logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class TaskResult:
    name: str
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BackgroundDispatcher:
    """Fire-and-forget job queue drained by a single worker thread."""

    def __init__(self, name: str = "shelfcast-sync", *, max_results: int = 256) -> None:
        self._name = name
        self._jobs: "queue.Queue[Any]" = queue.Queue()
        self._results: "queue.Queue[TaskResult]" = queue.Queue(maxsize=max_results)
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, name: str, func: Callable[..., Any], *args: Any) -> bool:
        with self._lock:
            if self._closed:
                logger.warning("Dispatcher closed, dropping %s", name)
                return False
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
                self._thread.start()
            self._jobs.put((name, func, args))
        return True

    def pop_results(self) -> List[TaskResult]:
        results: List[TaskResult] = []
        while True:
            try:
                results.append(self._results.get_nowait())
            except queue.Empty:
                return results

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every submitted job has finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._jobs.all_tasks_done:
            while self._jobs.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._jobs.all_tasks_done.wait(remaining)
        return True

    def shutdown(self, timeout: Optional[float] = 5.0) -> bool:
        """Run outstanding jobs, then stop the worker."""
        with self._lock:
            if self._closed:
                return True
            self._closed = True
            thread = self._thread
            if thread is None:
                return True
            self._jobs.put(_STOP)
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Dispatcher %s did not finish within %.1fs", self._name, timeout or 0.0)
            return False
        return True

    def _run(self) -> None:
        while True:
            job = self._jobs.get()
            try:
                if job is _STOP:
                    return
                name, func, args = job
                self._post(self._execute(name, func, args))
            finally:
                self._jobs.task_done()

    @staticmethod
    def _execute(name: str, func: Callable[..., Any], args: tuple) -> TaskResult:
        try:
            func(*args)
        except SyncError as exc:
            logger.warning("Background %s failed: %s", name, exc)
            return TaskResult(name, exc)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Background %s raised unexpectedly", name)
            return TaskResult(name, exc)
        return TaskResult(name)

    def _post(self, result: TaskResult) -> None:
        try:
            self._results.put_nowait(result)
        except queue.Full:
            try:
                self._results.get_nowait()
            except queue.Empty:
                pass
            self._results.put_nowait(result)


class RepeatingTimer:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, interval: float, callback: Callable[[], None], *, name: str = "shelfcast-tick") -> None:
        self.interval = interval
        self._callback = callback
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self, timeout: Optional[float] = 1.0) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._callback()
            except Exception:  # pylint: disable=broad-except
                logger.exception("Timer %s callback failed", self._name)
