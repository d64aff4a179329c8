"""Shared progress map fed by pushes from the media server."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from shelfcast.core.errors import ShelfcastError
from shelfcast.core.models import ProgressRecord
from shelfcast.remote.protocols import ProgressSource


logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressRecord], None]


class ProgressFeed:
    """Thread-safe progress map keyed by item id, with push subscribers."""

    def __init__(self) -> None:
        self._records: Dict[str, ProgressRecord] = {}
        self._listeners: List[ProgressListener] = []
        self._lock = threading.Lock()

    def get(self, item_id: str) -> Optional[ProgressRecord]:
        with self._lock:
            return self._records.get(item_id)

    def items(self) -> Dict[str, ProgressRecord]:
        with self._lock:
            return dict(self._records)

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, record: ProgressRecord) -> None:
        if not record.item_id:
            return
        with self._lock:
            previous = self._records.get(record.item_id)
            if previous is not None and previous.last_update > record.last_update:
                logger.debug("Ignoring out-of-date progress for %s", record.item_id)
                return
            self._records[record.item_id] = record
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(record)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Progress listener failed for %s", record.item_id)

    def refresh(self, source: ProgressSource, item_ids: Iterable[str]) -> int:
        """Pull progress for ``item_ids`` and publish whatever the server returns."""
        updated = 0
        for item_id in item_ids:
            try:
                record = source.get_progress(item_id)
            except ShelfcastError as exc:
                logger.warning("Progress refresh failed for %s: %s", item_id, exc)
                continue
            if record is None:
                continue
            self.publish(record)
            updated += 1
        return updated
