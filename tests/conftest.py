"""
Shared fixtures and fakes for the Snap Sync test suite.

No network, broker or SSH server is needed: destinations and sources
are replaced by in-memory fakes, and third-party clients by mocks.
"""

import io
import threading

import pytest
from PIL import Image

from snap_sync.descriptors import LocalDescriptor
from snap_sync.destinations import ConnectivityError, Destination
from snap_sync.events import (
    ArtifactEvent,
    ClipHint,
    MediaCategory,
    SnapshotHint,
)

# A fixed instant: 2024-06-10 around noon UTC
FIXED_TS = 1718020800.0


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeDestination(Destination):
    """Records uploads in memory; raises queued failures first."""

    def __init__(self, dest_id: str, failures=None):
        super().__init__(LocalDescriptor(path=f"/fake/{dest_id}", name=dest_id))
        self.failures = list(failures or [])
        self.uploads: list[tuple[str, bytes]] = []
        self.deleted: list[str] = []
        self.calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def upload(self, relative_path: str, data: bytes) -> bool:
        with self._lock:
            self.calls += 1
            if self.failures:
                raise self.failures.pop(0)
            self.uploads.append((relative_path, data))
        return True

    def delete_if_exists(self, relative_path: str) -> None:
        with self._lock:
            self.deleted.append(relative_path)

    def probe(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


class BrokenDestination(FakeDestination):
    """Fails every attempt with a connectivity error."""

    def upload(self, relative_path: str, data: bytes) -> bool:
        with self._lock:
            self.calls += 1
        raise ConnectivityError(f"{self.id} is unreachable")


class FakeSource:
    """Artifact source returning a fixed payload (or raising)."""

    def __init__(self, payload: bytes = b"artifact-bytes", error: Exception | None = None):
        self.payload = payload
        self.error = error
        self.calls: list[ArtifactEvent] = []

    def fetch(self, event: ArtifactEvent) -> bytes:
        self.calls.append(event)
        if self.error is not None:
            raise self.error
        return self.payload


class WaitRecorder:
    """Stand-in for the backoff wait: records delays, never sleeps."""

    def __init__(self):
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> bool:
        self.delays.append(seconds)
        return False


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_jpeg(color=(200, 30, 30), size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, "JPEG")
    return buf.getvalue()


def make_snapshot_event(identifier: str = "img-42", camera: str = "front", image: bytes = b"jpeg") -> ArtifactEvent:
    return ArtifactEvent(
        category=MediaCategory.SNAPSHOT,
        identifier=identifier,
        timestamp=FIXED_TS,
        source_hint=SnapshotHint(camera=camera, object_name="person", image=image),
    )


def make_clip_event(
    identifier: str = "vid-7", camera: str = "front", in_progress: bool = False
) -> ArtifactEvent:
    return ArtifactEvent(
        category=MediaCategory.RECORDING,
        identifier=identifier,
        timestamp=FIXED_TS,
        source_hint=ClipHint(
            camera=camera,
            review_id=identifier,
            start_time=FIXED_TS - 30,
            end_time=None if in_progress else FIXED_TS,
        ),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def jpeg_bytes() -> bytes:
    return make_jpeg()


@pytest.fixture()
def wait_recorder() -> WaitRecorder:
    return WaitRecorder()
