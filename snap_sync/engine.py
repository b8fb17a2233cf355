"""
Event engine for Snap Sync.

Receives parsed broker messages and keeps the ingestion path free of
I/O: state changes are applied on the spot, and every accepted artifact
gets its own background workflow (fetch, then upload everywhere).
Workflows run independently with no ordering between them.
"""

import logging
import threading
import time

from snap_sync.events import ArtifactEvent, StateChange
from snap_sync.reviews import ReviewSequencer
from snap_sync.router import EventRouter
from snap_sync.state import SubscriptionStateTracker
from snap_sync.uploader import OutcomeStatus, UploadOrchestrator

logger = logging.getLogger(__name__)

# How long to wait for workflows once their retries are cancelled
_CANCEL_JOIN_TIMEOUT = 10.0


class SyncEngine:
    """Ties the state tracker, router and uploader together."""

    def __init__(
        self,
        tracker: SubscriptionStateTracker,
        router: EventRouter,
        orchestrator: UploadOrchestrator,
        reviews: ReviewSequencer | None = None,
    ):
        self.tracker = tracker
        self.router = router
        self.orchestrator = orchestrator
        self.reviews = reviews or ReviewSequencer()
        self._workflows: set[threading.Thread] = set()
        self._accepting = True
        self._lock = threading.Lock()

    @property
    def active_workflows(self) -> int:
        with self._lock:
            return len(self._workflows)

    def handle_message(self, msg: StateChange | ArtifactEvent | None) -> threading.Thread | None:
        """Broker callback.  Returns the spawned workflow thread, if any."""
        if msg is None:
            return None
        if isinstance(msg, StateChange):
            self.tracker.apply_state_change(msg.category, msg.enabled, msg.camera)
            return None
        return self.submit(msg)

    def submit(self, event: ArtifactEvent) -> threading.Thread | None:
        """Start a workflow for *event* if it is enabled right now."""
        with self._lock:
            if not self._accepting:
                logger.info("Shutting down, dropping %s %s", event.category.value, event.identifier)
                return None
            if not self.router.accepts(event):
                return None
            event = self.reviews.stamp(event)
            thread = threading.Thread(
                target=self._workflow,
                args=(event,),
                daemon=True,
                name=f"Sync-{event.identifier}",
            )
            self._workflows.add(thread)
        thread.start()
        return thread

    def _workflow(self, event: ArtifactEvent) -> None:
        try:
            with self.reviews.turn(event) as current:
                if not current:
                    logger.debug("Clip %s superseded by a newer one, not uploading", event.identifier)
                    return
                self._fetch_and_upload(event)
        except Exception:
            logger.exception("Unexpected error in workflow for %s", event.identifier)
        finally:
            with self._lock:
                self._workflows.discard(threading.current_thread())

    def _fetch_and_upload(self, event: ArtifactEvent) -> None:
        decision = self.router.fetch(event)
        if not decision.dispatched:
            return
        outcomes = self.orchestrator.run(decision.task)
        failed = [o for o in outcomes.values() if o.status is OutcomeStatus.FAILED]
        if failed:
            logger.warning(
                "%s %s: %d of %d destination(s) failed",
                event.category.value.capitalize(),
                event.identifier,
                len(failed),
                len(outcomes),
            )
        else:
            logger.debug("%s %s done", event.category.value.capitalize(), event.identifier)

    def shutdown(self, grace: float = 30.0) -> bool:
        """
        Stop accepting events and wind down running workflows.

        Waits up to *grace* seconds for workflows to finish, then cancels
        pending retries and waits briefly for the rest.  Returns True when
        every workflow finished.
        """
        with self._lock:
            self._accepting = False
            pending = list(self._workflows)

        if pending:
            logger.info("Waiting up to %.0fs for %d workflow(s)", grace, len(pending))
        deadline = time.monotonic() + max(0.0, grace)
        for thread in pending:
            thread.join(max(0.0, deadline - time.monotonic()))

        still_running = [t for t in pending if t.is_alive()]
        if still_running:
            logger.warning(
                "%d workflow(s) still running after grace period, cancelling retries",
                len(still_running),
            )
        self.orchestrator.shutdown()
        for thread in still_running:
            thread.join(_CANCEL_JOIN_TIMEOUT)

        leftover = sum(1 for t in still_running if t.is_alive())
        if leftover:
            logger.error("%d workflow(s) did not stop", leftover)

        stats = self.orchestrator.stats
        logger.info(
            "Uploads this run: %d stored (%d bytes), %d skipped, %d failed",
            stats.total_uploaded,
            stats.total_bytes,
            stats.total_skipped,
            stats.total_failed,
        )
        return leftover == 0
