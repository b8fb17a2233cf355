"""Tests for EventRouter dispatch decisions."""

import logging

from snap_sync.events import MediaCategory
from snap_sync.router import Action, EventRouter
from snap_sync.sources import FetchError
from snap_sync.state import SubscriptionStateTracker

from conftest import FakeDestination, FakeSource, make_clip_event, make_snapshot_event


def _router(tracker=None, snapshot_source=None, clip_source=None, destinations=None):
    tracker = tracker or SubscriptionStateTracker()
    sources = {
        MediaCategory.SNAPSHOT: snapshot_source or FakeSource(b"jpeg"),
        MediaCategory.RECORDING: clip_source or FakeSource(b"mp4"),
    }
    destinations = destinations or [FakeDestination("local"), FakeDestination("sftp")]
    return EventRouter(tracker, sources, destinations), tracker, sources, destinations


def test_disabled_category_is_ignored_without_fetch():
    router, tracker, sources, destinations = _router()
    tracker.apply_state_change(MediaCategory.RECORDING, False, "front")

    decision = router.route(make_clip_event("vid-7"))

    assert decision.action is Action.IGNORE
    assert decision.task is None
    assert sources[MediaCategory.RECORDING].calls == []
    assert all(d.calls == 0 for d in destinations)


def test_unknown_state_is_ignored():
    router, _, sources, _ = _router()
    assert router.route(make_snapshot_event()).dispatched is False
    assert sources[MediaCategory.SNAPSHOT].calls == []


def test_enabled_category_dispatches_to_all_destinations():
    router, tracker, _, destinations = _router()
    tracker.apply_state_change(MediaCategory.SNAPSHOT, True, "front")
    event = make_snapshot_event("img-42")

    decision = router.route(event)

    assert decision.dispatched
    task = decision.task
    assert task.artifact is event
    assert task.payload == b"jpeg"
    assert [d.id for d in task.destinations] == [d.id for d in destinations]
    assert task.relative_path == event.relative_path()


def test_state_is_per_camera():
    router, tracker, _, _ = _router()
    tracker.apply_state_change(MediaCategory.SNAPSHOT, True, "front")
    assert router.route(make_snapshot_event(camera="back")).dispatched is False


def test_fetch_failure_is_ignored(caplog):
    router, tracker, _, destinations = _router(clip_source=FakeSource(error=FetchError("gone")))
    tracker.apply_state_change(MediaCategory.RECORDING, True, "front")

    with caplog.at_level(logging.WARNING):
        decision = router.route(make_clip_event())

    assert decision.action is Action.IGNORE
    assert "gone" in caplog.text
    assert all(d.calls == 0 for d in destinations)


def test_missing_source_is_ignored():
    tracker = SubscriptionStateTracker()
    tracker.apply_state_change(MediaCategory.RECORDING, True, "front")
    router = EventRouter(tracker, {}, [FakeDestination("local")])
    assert router.route(make_clip_event()).dispatched is False
