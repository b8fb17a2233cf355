"""Tests for artifact sources and the Frigate API client."""

from unittest.mock import MagicMock

import pytest
import requests

from snap_sync.sources import (
    EmbeddedSnapshotSource,
    FetchError,
    FrigateApiClient,
    FrigateClipSource,
)

from conftest import make_clip_event, make_snapshot_event

MP4 = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 32


def _session(content=b"", json_body=None, error=None, status_error=None):
    response = MagicMock()
    response.content = content
    response.json.return_value = json_body
    if status_error:
        response.raise_for_status.side_effect = status_error
    session = MagicMock()
    session.get.return_value = response
    if error:
        session.get.side_effect = error
    return session


class TestEmbeddedSnapshotSource:
    def test_returns_image(self):
        event = make_snapshot_event(image=b"jpeg-bytes")
        assert EmbeddedSnapshotSource().fetch(event) == b"jpeg-bytes"

    def test_empty_image(self):
        with pytest.raises(FetchError):
            EmbeddedSnapshotSource().fetch(make_snapshot_event(image=b""))

    def test_wrong_hint(self):
        with pytest.raises(FetchError):
            EmbeddedSnapshotSource().fetch(make_clip_event())


class TestRecordingClip:
    def test_downloads_clip(self):
        session = _session(content=MP4)
        api = FrigateApiClient("http://frigate:5000/", timeout=12, session=session)

        assert api.recording_clip("front", 100.0, 130.5) == MP4
        session.get.assert_called_once_with(
            "http://frigate:5000/api/front/start/100.0/end/130.5/clip.mp4", timeout=12
        )

    def test_empty_body(self):
        api = FrigateApiClient("http://frigate:5000", session=_session(content=b""))
        with pytest.raises(FetchError, match="Empty clip"):
            api.recording_clip("front", 1, 2)

    def test_not_mp4(self):
        api = FrigateApiClient("http://frigate:5000", session=_session(content=b"<html>oops</html>"))
        with pytest.raises(FetchError, match="not an MP4"):
            api.recording_clip("front", 1, 2)

    def test_transport_error(self):
        session = _session(error=requests.ConnectionError("refused"))
        api = FrigateApiClient("http://frigate:5000", session=session)
        with pytest.raises(FetchError, match="refused"):
            api.recording_clip("front", 1, 2)

    def test_http_error(self):
        session = _session(content=MP4, status_error=requests.HTTPError("404 Not Found"))
        api = FrigateApiClient("http://frigate:5000", session=session)
        with pytest.raises(FetchError, match="404"):
            api.recording_clip("front", 1, 2)


class TestTestCall:
    def test_healthy(self):
        session = _session(json_body={"last24Hours": {}, "root": {}})
        api = FrigateApiClient("http://frigate:5000", session=session)
        assert api.test_call() is True
        assert session.get.call_args.args[0] == "http://frigate:5000/api/review/summary"

    def test_unexpected_body(self):
        api = FrigateApiClient("http://frigate:5000", session=_session(json_body={"nope": 1}))
        assert api.test_call() is False

    def test_unreachable(self):
        api = FrigateApiClient(
            "http://frigate:5000", session=_session(error=requests.Timeout("slow"))
        )
        assert api.test_call() is False


def test_proxy_applied_to_session():
    api = FrigateApiClient("http://frigate:5000", proxy="socks5://10.0.0.1:9000")
    assert api._session.proxies["http"] == "socks5://10.0.0.1:9000"
    assert api._session.proxies["https"] == "socks5://10.0.0.1:9000"
    api.close()


class TestClipSource:
    def test_uses_hint(self):
        api = MagicMock()
        api.recording_clip.return_value = MP4
        event = make_clip_event()

        assert FrigateClipSource(api).fetch(event) == MP4
        hint = event.source_hint
        api.recording_clip.assert_called_once_with(hint.camera, hint.start_time, hint.end_time)

    def test_in_progress_clip_ends_now(self):
        api = MagicMock()
        api.recording_clip.return_value = MP4
        event = make_clip_event(in_progress=True)

        FrigateClipSource(api, clock=lambda: 1718020900.5).fetch(event)
        api.recording_clip.assert_called_once_with("front", event.source_hint.start_time, 1718020900.5)

    def test_wrong_hint(self):
        with pytest.raises(FetchError):
            FrigateClipSource(MagicMock()).fetch(make_snapshot_event())
