"""Tests for DedupGuard."""

import threading
import time

import pytest

from snap_sync.dedup import ClaimAborted, DedupGuard


def test_record_then_check():
    guard = DedupGuard()
    assert guard.check_and_maybe_skip("nas", "img-42") is False
    guard.record("nas", "img-42")
    assert guard.check_and_maybe_skip("nas", "img-42") is True
    assert guard.check_and_maybe_skip("backup", "img-42") is False


def test_record_is_idempotent():
    guard = DedupGuard()
    guard.record("nas", "img-42")
    guard.record("nas", "img-42")
    assert len(guard) == 1


def test_claim_release_delivered():
    guard = DedupGuard()
    assert guard.claim("nas", "img-42") is True
    guard.release("nas", "img-42", delivered=True)
    assert guard.claim("nas", "img-42") is False
    assert guard.check_and_maybe_skip("nas", "img-42") is True


def test_claim_release_failed_allows_retry():
    guard = DedupGuard()
    assert guard.claim("nas", "img-42") is True
    guard.release("nas", "img-42", delivered=False)
    assert guard.check_and_maybe_skip("nas", "img-42") is False
    assert guard.claim("nas", "img-42") is True


def test_second_claim_waits_for_first():
    guard = DedupGuard()
    assert guard.claim("nas", "img-42") is True

    result = []
    waiter = threading.Thread(target=lambda: result.append(guard.claim("nas", "img-42")))
    waiter.start()
    time.sleep(0.1)
    assert result == []  # still blocked

    guard.release("nas", "img-42", delivered=True)
    waiter.join(timeout=5)
    assert result == [False]


def test_claims_on_different_pairs_do_not_block():
    guard = DedupGuard()
    assert guard.claim("nas", "img-42") is True
    assert guard.claim("backup", "img-42") is True
    assert guard.claim("nas", "img-43") is True


def test_waiting_claim_gives_up_when_aborted():
    guard = DedupGuard()
    abort = threading.Event()
    assert guard.claim("nas", "img-42") is True

    errors = []

    def wait_for_claim():
        try:
            guard.claim("nas", "img-42", abort=abort)
        except ClaimAborted as exc:
            errors.append(exc)

    waiter = threading.Thread(target=wait_for_claim)
    waiter.start()
    time.sleep(0.1)
    abort.set()
    waiter.join(timeout=5)

    assert not waiter.is_alive()
    assert len(errors) == 1


def test_abort_does_not_affect_free_pairs():
    abort = threading.Event()
    abort.set()
    assert DedupGuard().claim("nas", "img-42", abort=abort) is True


def test_aborted_claim_raises_immediately_when_already_set():
    guard = DedupGuard()
    guard.claim("nas", "img-42")
    abort = threading.Event()
    abort.set()
    with pytest.raises(ClaimAborted):
        guard.claim("nas", "img-42", abort=abort)
