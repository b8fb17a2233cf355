"""Dispatch decisions for Snap Sync.

The router is the gate between the broker and the uploader: an artifact
whose category is switched off for its camera is dropped on the spot,
anything else is fetched and turned into an :class:`UploadTask` aimed at
every configured destination.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from snap_sync.destinations import Destination
from snap_sync.events import ArtifactEvent, MediaCategory
from snap_sync.sources import ArtifactSource, FetchError
from snap_sync.state import SubscriptionStateTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadTask:
    """One fetched artifact bound for a list of destinations."""

    artifact: ArtifactEvent
    payload: bytes = field(repr=False)
    destinations: tuple[Destination, ...]

    @property
    def relative_path(self) -> str:
        return self.artifact.relative_path()

    @property
    def superseded_paths(self) -> tuple[str, ...]:
        return self.artifact.superseded_paths()


class Action(Enum):
    DISPATCH = "dispatch"
    IGNORE = "ignore"


@dataclass(frozen=True)
class Decision:
    action: Action
    task: UploadTask | None = None

    @classmethod
    def dispatch(cls, task: UploadTask) -> "Decision":
        return cls(Action.DISPATCH, task)

    @classmethod
    def ignore(cls) -> "Decision":
        return cls(Action.IGNORE)

    @property
    def dispatched(self) -> bool:
        return self.action is Action.DISPATCH


class EventRouter:
    """
    Decides whether an artifact event is uploaded.

    Parameters
    ----------
    tracker : SubscriptionStateTracker
        Current enabled state per category and camera.
    sources : mapping of MediaCategory to ArtifactSource
        Where the bytes of each category come from.
    destinations : sequence of Destination
        Every configured destination, in configuration order.
    """

    def __init__(
        self,
        tracker: SubscriptionStateTracker,
        sources: Mapping[MediaCategory, ArtifactSource],
        destinations: Sequence[Destination],
    ):
        self._tracker = tracker
        self._sources = dict(sources)
        self.destinations = tuple(destinations)

    def accepts(self, event: ArtifactEvent) -> bool:
        """Return True when the event's category is enabled for its camera."""
        if not self._tracker.is_enabled(event.category, event.camera):
            logger.debug(
                "%s %s ignored: %s disabled for camera '%s'",
                event.category.value.capitalize(),
                event.identifier,
                event.category.value,
                event.camera,
            )
            return False
        return True

    def route(self, event: ArtifactEvent) -> Decision:
        """Fetch the artifact and build an upload task, or ignore the event."""
        if not self.accepts(event):
            return Decision.ignore()
        return self.fetch(event)

    def fetch(self, event: ArtifactEvent) -> Decision:
        """Retrieve the payload of an already accepted event."""
        source = self._sources.get(event.category)
        if source is None:
            logger.warning("No source configured for %s events", event.category.value)
            return Decision.ignore()

        try:
            payload = source.fetch(event)
        except FetchError as exc:
            logger.warning("Fetching %s %s failed: %s", event.category.value, event.identifier, exc)
            return Decision.ignore()

        logger.info(
            "Dispatching %s %s (%d bytes) to %d destination(s)",
            event.category.value,
            event.identifier,
            len(payload),
            len(self.destinations),
        )
        return Decision.dispatch(
            UploadTask(artifact=event, payload=payload, destinations=self.destinations)
        )
