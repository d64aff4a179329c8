"""HTTP client for Audiobookshelf-compatible media servers."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from shelfcast.core.errors import ResolutionError, SessionError, SyncError
from shelfcast.core.models import DeviceInfo, LibraryItem, ProgressRecord


logger = logging.getLogger(__name__)

_API_SUFFIX = re.compile(r"/api/?$")


def normalize_server_url(url: str) -> str:
    """Strip trailing slashes and a trailing ``/api`` and ensure a scheme."""
    clean = url.strip().rstrip("/")
    clean = _API_SUFFIX.sub("", clean).rstrip("/")
    if clean and not clean.startswith(("http://", "https://")):
        clean = f"http://{clean}"
    return clean


def build_http_session(*, token: str, retries: int = 3) -> requests.Session:
    session = requests.Session()
    # POST is not retried: a repeated /play would open a second session
    retry = Retry(total=retries, backoff_factor=0.5, status_forcelist=[502, 503, 504])
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
    )
    return session


class ABSClient:
    """
    Thin wrapper around the media server's playback-session API.
    """

    def __init__(
        self,
        server_url: str,
        token: str,
        *,
        timeout: float = 5.0,
        retries: int = 3,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = normalize_server_url(server_url)
        self.timeout = timeout
        self._session = session or build_http_session(token=token, retries=retries)

    def _url(self, endpoint: str) -> str:
        path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        if not path.startswith("/api/"):
            path = f"/api{path}"
        return f"{self.base_url}{path}"

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        url = self._url(endpoint)
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise ResolutionError(f"Cannot reach media server at {self.base_url}") from exc

    @staticmethod
    def _json(resp: requests.Response, endpoint: str) -> Any:
        try:
            return resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise SessionError(f"Media server returned invalid JSON for {endpoint}") from exc

    def open_session(
        self,
        item_id: str,
        device: DeviceInfo,
        mime_types: List[str],
    ) -> Dict[str, Any]:
        endpoint = f"/items/{item_id}/play"
        payload = {
            "deviceInfo": device.to_payload(),
            "supportedMimeTypes": list(mime_types),
            "mediaPlayer": device.client_name,
            "forceDirectPlay": False,
            "forceTranscode": False,
        }
        resp = self._request("POST", endpoint, json=payload)
        if resp.status_code == 404:
            raise ResolutionError(f"Item {item_id} was not found on the media server")
        if resp.status_code != 200:
            raise SessionError(
                f"Media server declined the playback session ({resp.status_code}): {resp.text[:200]}"
            )
        data = self._json(resp, endpoint)
        if not isinstance(data, dict) or not data.get("id"):
            raise SessionError("Media server returned a session without an id")
        logger.info("Opened playback session %s for item %s", data.get("id"), item_id)
        return data

    def sync_session(
        self,
        session_id: str,
        time_listened: float,
        current_time: float,
        duration: float,
    ) -> None:
        payload = {
            "timeListened": round(max(0.0, time_listened), 3),
            "currentTime": round(max(0.0, current_time), 3),
            "duration": duration,
        }
        try:
            resp = self._request("POST", f"/session/{session_id}/sync", json=payload)
        except ResolutionError as exc:
            raise SyncError(str(exc)) from exc
        if resp.status_code != 200:
            raise SyncError(f"Session sync failed with status {resp.status_code}")

    def close_session(
        self,
        session_id: str,
        time_listened: float,
        current_time: float,
    ) -> None:
        payload = {
            "timeListened": round(max(0.0, time_listened), 3),
            "currentTime": round(max(0.0, current_time), 3),
        }
        try:
            resp = self._request("POST", f"/session/{session_id}/close", json=payload)
        except ResolutionError as exc:
            raise SyncError(str(exc)) from exc
        if resp.status_code != 200:
            raise SyncError(f"Session close failed with status {resp.status_code}")
        logger.info("Closed playback session %s", session_id)

    def get_progress(self, item_id: str) -> Optional[ProgressRecord]:
        endpoint = f"/me/progress/{item_id}"
        resp = self._request("GET", endpoint)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise SessionError(f"{endpoint} failed with status {resp.status_code}")
        data = self._json(resp, endpoint)
        if not isinstance(data, dict):
            return None
        record = ProgressRecord.from_dict(data)
        if not record.item_id:
            record = ProgressRecord.from_dict({**data, "itemId": item_id})
        return record

    def get_item(self, item_id: str) -> LibraryItem:
        endpoint = f"/items/{item_id}"
        resp = self._request("GET", endpoint, params={"expanded": 1, "include": "progress"})
        if resp.status_code == 404:
            raise ResolutionError(f"Item {item_id} was not found on the media server")
        if resp.status_code != 200:
            raise SessionError(f"{endpoint} failed with status {resp.status_code}")
        data = self._json(resp, endpoint)
        if not isinstance(data, dict) or "id" not in data:
            raise ResolutionError(f"Media server returned no item for {item_id}")
        return LibraryItem.from_dict(data)

    def close(self) -> None:
        self._session.close()
