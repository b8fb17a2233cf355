"""In-memory delivery ledger for Snap Sync.

Tracks which artifacts have already reached which destination during
this process lifetime so duplicate broker deliveries are not uploaded
twice.  Nothing is persisted.
"""

import threading

# How often a waiting claim looks at its abort event
_ABORT_POLL = 0.5


class ClaimAborted(Exception):
    """A claim stopped waiting because shutdown was requested."""


class DedupGuard:
    """
    Set of delivered (destination id, artifact id) pairs.

    Besides the plain check/record pair, ``claim``/``release`` let an
    upload reserve a pair while it is in flight: a second workflow for
    the same pair waits for the first to finish and then sees the
    outcome, so concurrent duplicates never write the bytes twice.
    """

    def __init__(self) -> None:
        self._delivered: set[tuple[str, str]] = set()
        self._in_flight: set[tuple[str, str]] = set()
        self._cond = threading.Condition()

    def check_and_maybe_skip(self, destination_id: str, artifact_id: str) -> bool:
        """Return True if the artifact was already delivered to the destination."""
        with self._cond:
            return (destination_id, artifact_id) in self._delivered

    def record(self, destination_id: str, artifact_id: str) -> None:
        """Mark the artifact as delivered to the destination.  Idempotent."""
        with self._cond:
            self._delivered.add((destination_id, artifact_id))
            self._cond.notify_all()

    def claim(
        self,
        destination_id: str,
        artifact_id: str,
        abort: threading.Event | None = None,
    ) -> bool:
        """
        Reserve a pair for upload.

        Blocks while another workflow holds the same pair.  Returns False
        when the pair is already delivered (caller should skip), True when
        the caller now owns the pair and must call :meth:`release`.
        Raises ClaimAborted if *abort* is set while waiting.
        """
        key = (destination_id, artifact_id)
        with self._cond:
            while key in self._in_flight:
                if abort is not None and abort.is_set():
                    raise ClaimAborted(f"Gave up waiting for {artifact_id} on {destination_id}")
                self._cond.wait(_ABORT_POLL)
            if key in self._delivered:
                return False
            self._in_flight.add(key)
            return True

    def release(self, destination_id: str, artifact_id: str, delivered: bool) -> None:
        """Give up a claimed pair, recording it as delivered when *delivered*."""
        key = (destination_id, artifact_id)
        with self._cond:
            self._in_flight.discard(key)
            if delivered:
                self._delivered.add(key)
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._delivered)
