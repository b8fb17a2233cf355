"""Tests for SubscriptionStateTracker."""

import logging
import threading

from snap_sync.events import MediaCategory
from snap_sync.state import SubscriptionStateTracker


def test_unknown_category_defaults_to_disabled():
    tracker = SubscriptionStateTracker()
    assert tracker.is_enabled(MediaCategory.SNAPSHOT) is False
    assert tracker.is_enabled(MediaCategory.RECORDING, "front") is False


def test_apply_then_query():
    tracker = SubscriptionStateTracker()
    tracker.apply_state_change(MediaCategory.SNAPSHOT, True, "front")
    assert tracker.is_enabled(MediaCategory.SNAPSHOT, "front") is True
    tracker.apply_state_change(MediaCategory.SNAPSHOT, False, "front")
    assert tracker.is_enabled(MediaCategory.SNAPSHOT, "front") is False


def test_applying_twice_is_idempotent():
    once = SubscriptionStateTracker()
    once.apply_state_change(MediaCategory.RECORDING, True, "yard")

    twice = SubscriptionStateTracker()
    twice.apply_state_change(MediaCategory.RECORDING, True, "yard")
    twice.apply_state_change(MediaCategory.RECORDING, True, "yard")

    assert once.snapshot() == twice.snapshot()


def test_cameras_and_categories_are_independent():
    tracker = SubscriptionStateTracker()
    tracker.apply_state_change(MediaCategory.SNAPSHOT, True, "front")

    assert tracker.is_enabled(MediaCategory.SNAPSHOT, "back") is False
    assert tracker.is_enabled(MediaCategory.RECORDING, "front") is False
    assert tracker.is_enabled(MediaCategory.SNAPSHOT) is False


def test_logs_only_on_change(caplog):
    tracker = SubscriptionStateTracker()
    with caplog.at_level(logging.INFO, logger="snap_sync.state"):
        tracker.apply_state_change(MediaCategory.SNAPSHOT, True, "front")
        tracker.apply_state_change(MediaCategory.SNAPSHOT, True, "front")
    assert len(caplog.records) == 1
    assert "enabled" in caplog.records[0].getMessage()


def test_snapshot_is_a_copy():
    tracker = SubscriptionStateTracker()
    tracker.apply_state_change(MediaCategory.SNAPSHOT, True, "front")
    copy = tracker.snapshot()
    copy[(MediaCategory.SNAPSHOT, "front")] = False
    assert tracker.is_enabled(MediaCategory.SNAPSHOT, "front") is True


def test_concurrent_updates_leave_consistent_state():
    tracker = SubscriptionStateTracker()
    cameras = [f"cam{i}" for i in range(20)]

    def toggle(camera):
        for _ in range(200):
            tracker.apply_state_change(MediaCategory.SNAPSHOT, False, camera)
            tracker.apply_state_change(MediaCategory.SNAPSHOT, True, camera)

    threads = [threading.Thread(target=toggle, args=(c,)) for c in cameras]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert all(tracker.is_enabled(MediaCategory.SNAPSHOT, c) for c in cameras)
    assert len(tracker.snapshot()) == len(cameras)
