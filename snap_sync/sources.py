"""
Artifact sources for Snap Sync.

A source turns an :class:`~snap_sync.events.ArtifactEvent` into the bytes
to upload.  Snapshots arrive inline with the broker message; recording
clips are exported on demand through the Frigate HTTP API.

A failed fetch is final for that event: nothing here retries, because
Frigate's own retention may already have expired the artifact.
"""

import logging
import time
from collections.abc import Callable
from typing import Protocol

import requests

from snap_sync.events import ArtifactEvent, ClipHint, SnapshotHint

logger = logging.getLogger(__name__)

_MP4_MIN_LEN = 12
_MP4_MAGIC = b"ftyp"


class FetchError(Exception):
    """The artifact could not be retrieved from its origin."""


class ArtifactSource(Protocol):
    """Anything that can produce the bytes of an artifact."""

    def fetch(self, event: ArtifactEvent) -> bytes: ...


class EmbeddedSnapshotSource:
    """Returns the JPEG carried in the snapshot message itself."""

    def fetch(self, event: ArtifactEvent) -> bytes:
        hint = event.source_hint
        if not isinstance(hint, SnapshotHint):
            raise FetchError(f"Event {event.identifier} carries no snapshot image")
        if not hint.image:
            raise FetchError(f"Snapshot {event.identifier} is empty")
        return hint.image


class FrigateApiClient:
    """
    Minimal Frigate HTTP API client.

    Parameters
    ----------
    base_url : str
        Frigate address, e.g. ``http://frigate.local:5000``.
    proxy : str, optional
        HTTP(S) or SOCKS proxy URL applied to every request.
    timeout : float
        Per-request timeout in seconds.
    session : requests.Session, optional
        Pre-built session (tests pass a fake).
    """

    def __init__(
        self,
        base_url: str,
        proxy: str | None = None,
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        if proxy:
            self._session.proxies.update({"http": proxy, "https": proxy})

    def _get(self, path: str) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"GET {url} failed: {exc}") from exc
        return response

    def recording_clip(self, camera: str, start_time: float, end_time: float) -> bytes:
        """Export and download the MP4 clip of *camera* between the two timestamps."""
        path = f"api/{camera}/start/{start_time}/end/{end_time}/clip.mp4"
        logger.debug("Requesting clip %s", path)
        data = self._get(path).content

        if not data:
            raise FetchError(f"Empty clip returned for camera '{camera}' ({start_time}-{end_time})")
        if len(data) < _MP4_MIN_LEN or data[4:8] != _MP4_MAGIC:
            raise FetchError(
                f"Clip for camera '{camera}' is not an MP4 file ({len(data)} bytes)"
            )
        return data

    def test_call(self) -> bool:
        """Return True when the API answers a review summary request."""
        try:
            body = self._get("api/review/summary").json()
        except (FetchError, ValueError) as exc:
            logger.error("Frigate API test call failed: %s", exc)
            return False
        if not isinstance(body, dict) or "last24Hours" not in body:
            logger.error("Frigate API test call returned an unexpected body")
            return False
        logger.info("Frigate API reachable at %s", self.base_url)
        return True

    def close(self) -> None:
        self._session.close()


class FrigateClipSource:
    """Fetches recording clips; a running review is cut at the current time."""

    def __init__(self, api: FrigateApiClient, clock: Callable[[], float] = time.time):
        self._api = api
        self._clock = clock

    def fetch(self, event: ArtifactEvent) -> bytes:
        hint = event.source_hint
        if not isinstance(hint, ClipHint):
            raise FetchError(f"Event {event.identifier} carries no clip window")
        end_time = self._clock() if hint.in_progress else hint.end_time
        return self._api.recording_clip(hint.camera, hint.start_time, end_time)
