"""
Upload engine for Snap Sync.

Fans one :class:`~snap_sync.router.UploadTask` out to every destination
in parallel.  Each destination runs its own bounded retry loop with
exponential backoff, so a slow or broken destination never holds up
the others.  Already delivered (destination, artifact) pairs are skipped
through the shared :class:`~snap_sync.dedup.DedupGuard`.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from snap_sync.dedup import ClaimAborted, DedupGuard
from snap_sync.destinations import Destination, TransferError
from snap_sync.router import UploadTask

logger = logging.getLogger(__name__)

_HISTORY_LIMIT = 1000

KIND_CANCELLED = "cancelled"
KIND_INTERNAL = "internal"
KIND_COLLISION = "collision"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff."""

    max_attempts: int = 6
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Return the wait after failed attempt number *attempt* (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class UploadOutcome:
    """Terminal result of one artifact on one destination."""
    destination_id: str
    artifact_id: str
    status: OutcomeStatus = OutcomeStatus.FAILED
    attempts: int = 0
    error_kind: str = ""
    error: str = ""
    size_bytes: int = 0
    started: float = 0.0
    finished: float = 0.0


@dataclass
class UploadStats:
    """Aggregated upload statistics."""
    total_uploaded: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    total_bytes: int = 0
    history: list[UploadOutcome] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, outcome: UploadOutcome) -> None:
        with self._lock:
            self.history.append(outcome)
            if outcome.status is OutcomeStatus.SKIPPED:
                self.total_skipped += 1
            elif outcome.status is OutcomeStatus.SUCCESS:
                self.total_uploaded += 1
                self.total_bytes += outcome.size_bytes
            else:
                self.total_failed += 1
            if len(self.history) > _HISTORY_LIMIT:
                self.history = self.history[-_HISTORY_LIMIT:]


class UploadOrchestrator:
    """
    Delivers upload tasks to their destinations.

    Parameters
    ----------
    dedup : DedupGuard
        Shared delivery ledger.
    policy : RetryPolicy
        Attempt count and backoff for every destination.
    on_outcome : callable, optional
        Invoked with each UploadOutcome as it becomes terminal.
    wait : callable, optional
        ``wait(seconds) -> bool`` used between attempts; returns True to
        abort.  Defaults to waiting on the shutdown event.
    """

    def __init__(
        self,
        dedup: DedupGuard,
        policy: RetryPolicy | None = None,
        on_outcome: Callable[[UploadOutcome], None] | None = None,
        wait: Callable[[float], bool | None] | None = None,
    ):
        self._dedup = dedup
        self.policy = policy or RetryPolicy()
        self._on_outcome = on_outcome
        self._stop = threading.Event()
        self._wait = wait or self._stop.wait
        self.stats = UploadStats()

    def shutdown(self) -> None:
        """Abort pending backoff waits; in-flight attempts finish on their own."""
        self._stop.set()

    def run(self, task: UploadTask) -> dict[str, UploadOutcome]:
        """Upload *task* everywhere and return one outcome per destination id."""
        results: dict[str, UploadOutcome] = {}
        results_lock = threading.Lock()

        def worker(dest: Destination) -> None:
            outcome = self._deliver(task, dest)
            with results_lock:
                results[dest.id] = outcome

        threads = [
            threading.Thread(
                target=worker,
                args=(dest,),
                daemon=True,
                name=f"Upload-{dest.id}-{task.artifact.identifier}",
            )
            for dest in task.destinations
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        return {dest.id: results[dest.id] for dest in task.destinations}

    def _deliver(self, task: UploadTask, dest: Destination) -> UploadOutcome:
        artifact_id = task.artifact.identifier
        outcome = UploadOutcome(
            destination_id=dest.id,
            artifact_id=artifact_id,
            size_bytes=len(task.payload),
            started=time.time(),
        )

        try:
            if not self._dedup.claim(dest.id, artifact_id, abort=self._stop):
                outcome.status = OutcomeStatus.SKIPPED
                logger.info("Already delivered %s to %s, skipping", artifact_id, dest.id)
                return outcome

            delivered = False
            try:
                delivered = self._attempt(task, dest, outcome)
            finally:
                self._dedup.release(dest.id, artifact_id, delivered)
            if delivered:
                self._remove_superseded(task, dest)

        except ClaimAborted:
            outcome.error_kind = KIND_CANCELLED
            logger.error(
                "Upload of %s to %s cancelled by shutdown while a duplicate was in flight (attempts=0)",
                artifact_id, dest.id,
            )
        except Exception as exc:
            outcome.status = OutcomeStatus.FAILED
            outcome.error_kind = KIND_INTERNAL
            outcome.error = str(exc)
            logger.exception("Unexpected error uploading %s to %s", artifact_id, dest.id)
        finally:
            outcome.finished = time.time()
            self.stats.record(outcome)
            if self._on_outcome:
                try:
                    self._on_outcome(outcome)
                except Exception:
                    logger.exception("Error in on_outcome callback")

        return outcome

    def _attempt(self, task: UploadTask, dest: Destination, outcome: UploadOutcome) -> bool:
        """Run the retry loop; fill in *outcome* and return True on success."""
        artifact_id = task.artifact.identifier
        relative_path = task.relative_path
        max_attempts = self.policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            outcome.attempts = attempt
            try:
                logger.debug(
                    "Uploading %s to %s (%d bytes, attempt %d/%d)",
                    relative_path, dest.id, outcome.size_bytes, attempt, max_attempts,
                )
                stored = dest.upload(relative_path, task.payload)
            except TransferError as exc:
                outcome.error_kind = exc.kind
                outcome.error = str(exc)

                if not exc.retryable:
                    logger.error(
                        "Upload of %s to %s failed with %s error, not retrying (attempts=%d): %s",
                        artifact_id, dest.id, exc.kind, attempt, exc,
                    )
                    return False
                if attempt == max_attempts:
                    break

                delay = self.policy.delay_for(attempt)
                logger.warning(
                    "Upload of %s to %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    artifact_id, dest.id, attempt, max_attempts, exc, delay,
                )
                if self._wait(delay) or self._stop.is_set():
                    outcome.error_kind = KIND_CANCELLED
                    logger.error(
                        "Upload of %s to %s cancelled by shutdown (attempts=%d)",
                        artifact_id, dest.id, attempt,
                    )
                    return False
                continue

            if stored is False:
                outcome.status = OutcomeStatus.SKIPPED
                outcome.error_kind = KIND_COLLISION
                outcome.error = f"a different file already exists at {relative_path}"
                logger.warning(
                    "Kept existing file on %s, %s not stored (attempts=%d)",
                    dest.id, artifact_id, attempt,
                )
                return False

            outcome.status = OutcomeStatus.SUCCESS
            outcome.error_kind = ""
            outcome.error = ""
            logger.info(
                "Uploaded %s to %s (attempts=%d, %.1fs)",
                artifact_id, dest.id, attempt, time.time() - outcome.started,
            )
            return True

        logger.error(
            "Giving up on %s for %s after %d attempts (%s): %s",
            artifact_id, dest.id, outcome.attempts, outcome.error_kind, outcome.error,
        )
        return False

    def _remove_superseded(self, task: UploadTask, dest: Destination) -> None:
        for path in task.superseded_paths:
            try:
                dest.delete_if_exists(path)
            except TransferError as exc:
                logger.warning("Could not remove superseded %s from %s: %s", path, dest.id, exc)
