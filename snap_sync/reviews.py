"""Ordering of recording uploads within a Frigate review.

While a review is running, every ``new``/``update`` message produces a
clip of everything recorded so far.  Those clips are stored under two
alternating names so a complete copy stays at the destination while the
next one is written; the final clip replaces both.

The sequencer numbers the clips of each review in arrival order and lets
only one of them upload at a time.  An in-progress clip that a newer one
has overtaken by the time its turn comes is dropped.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from snap_sync.events import ArtifactEvent, ClipHint

logger = logging.getLogger(__name__)


class _Review:
    __slots__ = ("lock", "latest", "pending", "ended")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.latest = 0
        self.pending = 0
        self.ended = False


class ReviewSequencer:
    """Per-review revision counter and upload turn."""

    def __init__(self) -> None:
        self._reviews: dict[str, _Review] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._reviews)

    def stamp(self, event: ArtifactEvent) -> ArtifactEvent:
        """Number a recording event within its review; other events pass through."""
        hint = event.source_hint
        if not isinstance(hint, ClipHint):
            return event
        with self._lock:
            review = self._reviews.setdefault(hint.review_id, _Review())
            review.latest += 1
            review.pending += 1
            revision = review.latest
        return event.with_revision(revision)

    @contextmanager
    def turn(self, event: ArtifactEvent) -> Iterator[bool]:
        """
        Wait for the event's turn within its review.

        Yields False when the event is an in-progress clip that is no
        longer the newest one, True otherwise.  Events that are not
        stamped recordings always get True straight away.
        """
        hint = event.source_hint
        if not isinstance(hint, ClipHint):
            yield True
            return
        with self._lock:
            review = self._reviews.get(hint.review_id)
        if review is None:
            yield True
            return

        try:
            with review.lock:
                if hint.in_progress:
                    current = not review.ended and hint.revision == review.latest
                else:
                    current = True
                    review.ended = True
                yield current
        finally:
            with self._lock:
                review.pending -= 1
                if review.pending <= 0 and review.ended and self._reviews.get(hint.review_id) is review:
                    del self._reviews[hint.review_id]
                    logger.debug("Review %s finished", hint.review_id)
