"""Broker message model for Snap Sync.

Turns raw MQTT publishes from Frigate into one of two immutable message
shapes the engine understands: a :class:`StateChange` (a category was
switched on or off for a camera) or an :class:`ArtifactEvent` (a new
snapshot or recording clip is available).

Topic layout (``<prefix>`` defaults to ``frigate``):

  <prefix>/<camera>/snapshots/state      ON | OFF
  <prefix>/<camera>/recordings/state     ON | OFF
  <prefix>/<camera>/<object>/snapshot    JPEG bytes
  <prefix>/reviews                       JSON review (new / update / end)

A review that is still running (`new`, `update`) yields an in-progress
clip event; `end` yields the final clip.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

_ID_HASH_LEN = 16
_NAME_HASH_LEN = 8


class MediaCategory(str, Enum):
    """Which subscription toggle an event belongs to."""

    SNAPSHOT = "snapshot"
    RECORDING = "recording"


@dataclass(frozen=True)
class StateChange:
    """A category was enabled or disabled for a camera."""

    category: MediaCategory
    enabled: bool
    camera: str = ""


@dataclass(frozen=True)
class SnapshotHint:
    """Snapshot bytes delivered inline with the broker message."""

    camera: str
    object_name: str
    image: bytes = field(repr=False)


@dataclass(frozen=True)
class ClipHint:
    """
    What the API needs to export a recording clip.

    ``end_time`` is None while the review is still running; the clip is
    then fetched up to the current time and stored under one of two
    alternating names, chosen by ``revision``.
    """

    camera: str
    review_id: str
    start_time: float
    end_time: float | None = None
    revision: int = 0

    @property
    def in_progress(self) -> bool:
        return self.end_time is None


@dataclass(frozen=True)
class ArtifactEvent:
    """A new artifact is available upstream."""

    category: MediaCategory
    identifier: str
    timestamp: float
    source_hint: SnapshotHint | ClipHint

    @property
    def camera(self) -> str:
        return self.source_hint.camera

    def with_revision(self, revision: int) -> ArtifactEvent:
        """
        Return this recording event numbered *revision* within its review.

        In-progress clips get a per-revision identifier so each one is
        delivered; the final clip keeps the bare review id.
        """
        hint = self.source_hint
        if not isinstance(hint, ClipHint):
            return self
        identifier = f"{hint.review_id}~{revision}" if hint.in_progress else hint.review_id
        return replace(self, identifier=identifier, source_hint=replace(hint, revision=revision))

    def relative_path(self) -> str:
        """Return the upload path of this artifact, relative to a destination root."""
        hint = self.source_hint
        if isinstance(hint, ClipHint):
            suffix = f"-{hint.revision % 2}" if hint.in_progress else ""
            return self._clip_path(hint, suffix)
        stamp = datetime.fromtimestamp(self.timestamp)
        digest = hashlib.sha256(hint.image).hexdigest()[:_NAME_HASH_LEN]
        return (
            f"{stamp:%Y-%m-%d}/Snapshot-{hint.camera}-{hint.object_name}-"
            f"{stamp:%Y-%m-%d_%H-%M-%S}-{digest}.jpg"
        )

    def superseded_paths(self) -> tuple[str, ...]:
        """
        Paths this artifact replaces once it is stored.

        An in-progress clip replaces the other alternating copy; the final
        clip replaces both.
        """
        hint = self.source_hint
        if not isinstance(hint, ClipHint):
            return ()
        if hint.in_progress:
            return (self._clip_path(hint, f"-{(hint.revision + 1) % 2}"),)
        return (self._clip_path(hint, "-0"), self._clip_path(hint, "-1"))

    @staticmethod
    def _clip_path(hint: ClipHint, suffix: str) -> str:
        day = datetime.fromtimestamp(hint.start_time).strftime("%Y-%m-%d")
        return f"{day}/RecordingClip-{hint.camera}-{hint.review_id}{suffix}.mp4"


def on_off_from_bytes(payload: bytes) -> bool | None:
    """Parse an ``ON``/``OFF`` payload; return None for anything else."""
    try:
        value = payload.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None
    if value == "ON":
        return True
    if value == "OFF":
        return False
    return None


def parse_message(
    topic: str,
    payload: bytes,
    prefix: str = "frigate",
    now: float | None = None,
) -> StateChange | ArtifactEvent | None:
    """
    Parse one broker publish.

    Returns None for topics that are not relevant and for payloads that
    cannot be parsed (the latter are logged).
    """
    parts = topic.split("/")
    if not parts or parts[0] != prefix:
        return None

    received = time.time() if now is None else now

    if len(parts) > 3 and parts[3] == "state" and parts[2] in ("snapshots", "recordings"):
        return _parse_state(parts, payload)

    if len(parts) > 3 and parts[3] == "snapshot":
        return _parse_snapshot(parts, payload, received)

    if len(parts) == 2 and parts[1] == "reviews":
        return _parse_review(payload, received)

    logger.debug("Ignoring message with topic: %s", topic)
    return None


def _parse_state(parts: list[str], payload: bytes) -> StateChange | None:
    category = MediaCategory.SNAPSHOT if parts[2] == "snapshots" else MediaCategory.RECORDING
    state = on_off_from_bytes(payload)
    if state is None:
        logger.error("Failed to parse %s state payload: %r", parts[2], payload[:64])
        return None
    return StateChange(category=category, enabled=state, camera=parts[1])


def _parse_snapshot(parts: list[str], payload: bytes, received: float) -> ArtifactEvent | None:
    camera, object_name = parts[1], parts[2]
    try:
        with Image.open(io.BytesIO(payload)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        logger.warning("Failed to parse snapshot image on topic %s: %s", "/".join(parts), exc)
        return None
    if fmt != "JPEG":
        logger.warning("Snapshot on topic %s is %s, expected JPEG", "/".join(parts), fmt)
        return None

    digest = hashlib.sha256(payload).hexdigest()[:_ID_HASH_LEN]
    return ArtifactEvent(
        category=MediaCategory.SNAPSHOT,
        identifier=f"{camera}-{object_name}-{digest}",
        timestamp=received,
        source_hint=SnapshotHint(camera=camera, object_name=object_name, image=payload),
    )


def _parse_review(payload: bytes, received: float) -> ArtifactEvent | None:
    text = payload.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
        kind = data["type"]
        before, after = data["before"], data["after"]
        review_id = str(before["id"])
        camera = str(before["camera"])
        start_time = float(before["start_time"])
        end_time = after.get("end_time")
        if end_time is not None:
            end_time = float(end_time)
    except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.error("Parsing review payload failed: %s", exc)
        return None

    if kind not in ("new", "update", "end"):
        logger.error("Unknown review type %r for review %s", kind, review_id)
        return None

    if kind != "end":
        # still recording: fetch what exists so far
        end_time = None
    elif end_time is None:
        logger.error("Review %s from camera %s ended without an end time", review_id, camera)
        return None

    return ArtifactEvent(
        category=MediaCategory.RECORDING,
        identifier=review_id,
        timestamp=received,
        source_hint=ClipHint(
            camera=camera, review_id=review_id, start_time=start_time, end_time=end_time
        ),
    )
