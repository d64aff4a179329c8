"""Server-pushed progress over socket.io."""

from __future__ import annotations

import logging
from typing import Any, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from shelfcast.core.models import Credentials, ProgressRecord
from shelfcast.remote.progress import ProgressFeed


logger = logging.getLogger(__name__)

PROGRESS_EVENT = "user_item_progress_updated"


class ProgressPushClient:
    """Publishes `user_item_progress_updated` pushes into a `ProgressFeed`.

    The socket runs on python-socketio's own thread; the feed fans records out
    to its listeners from there.
    """

    def __init__(
        self,
        credentials: Credentials,
        feed: ProgressFeed,
        *,
        connect_timeout: float = 10.0,
        client: Optional[socketio.Client] = None,
    ) -> None:
        self._credentials = credentials
        self._feed = feed
        self._connect_timeout = connect_timeout
        self._client = client or socketio.Client(reconnection=True, logger=False)
        self._client.on("connect", self._on_connect)
        self._client.on("disconnect", self._on_disconnect)
        self._client.on(PROGRESS_EVENT, self._on_progress)

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    def connect(self) -> bool:
        """Open the socket. Returns False when the server cannot be reached."""
        try:
            self._client.connect(
                self._credentials.server_url,
                auth={"token": self._credentials.token},
                transports=["websocket"],
                socketio_path="socket.io",
                wait_timeout=self._connect_timeout,
            )
        except SocketConnectionError as exc:
            logger.warning("Progress push unavailable: %s", exc)
            return False
        return True

    def close(self) -> None:
        if not self._client.connected:
            return
        try:
            self._client.disconnect()
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Progress push: disconnect failed: %s", exc)

    def _on_connect(self) -> None:
        logger.info("Progress push connected to %s", self._credentials.server_url)
        # older servers authenticate with an explicit event instead of the handshake
        self._client.emit("auth", self._credentials.token)

    def _on_disconnect(self, *_args: Any) -> None:
        logger.info("Progress push disconnected")

    def _on_progress(self, data: Any) -> None:
        if not isinstance(data, dict):
            return
        payload = data.get("data") if isinstance(data.get("data"), dict) else data
        record = ProgressRecord.from_dict(payload)
        if not record.item_id:
            logger.debug("Progress push without item id ignored")
            return
        self._feed.publish(record)
