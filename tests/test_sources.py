"""Tests for the polling and realtime progress sources.

Polling runs against ``httpx.MockTransport``; the realtime source runs
against an in-memory change feed.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from mediaupload.models import MediaRecord, TrackingOutcome, UploadStatus
from mediaupload.upload.exceptions import ProgressCheckError
from mediaupload.upload.sources import (
    ChangeFeed,
    PollingProgressSource,
    ProgressSource,
    RealtimeProgressSource,
)
from mediaupload.upload.tracker import ProgressTracker


def _progress_body(files: dict[str, str], aggregate: str = "in_progress") -> dict:
    return {
        "success": True,
        "data": {
            "totalFiles": len(files),
            "files": [
                {
                    "mediaFileId": media_id,
                    "fileName": f"{media_id}.mp3",
                    "status": status,
                    "createdAt": "2026-10-17T10:00:00Z",
                    "updatedAt": "2026-10-17T10:00:05Z",
                }
                for media_id, status in files.items()
            ],
            "progress": {"percentage": 50, "status": aggregate},
        },
    }


def _polling(config, handler) -> PollingProgressSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PollingProgressSource(config, client=client)


# ======================================================================
# Polling
# ======================================================================


class TestPollingSource:
    """Polling the progress endpoint through a tracker."""

    def test_implements_protocol(self, upload_config):
        assert isinstance(PollingProgressSource(upload_config), ProgressSource)

    async def test_convergence_stops_polling(self, upload_config):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            status = "uploading" if len(bodies) == 1 else "completed"
            return httpx.Response(200, json=_progress_body({"a": status}))

        source = _polling(upload_config, handler)
        tracker = ProgressTracker(source, upload_config)
        tracker.start([MediaRecord(id="a", file_name="a.mp3")], "token")

        assert await asyncio.wait_for(tracker.wait(), timeout=2) == TrackingOutcome.CONVERGED
        fetches = len(bodies)
        await asyncio.sleep(upload_config.poll_interval_seconds * 5)

        assert fetches == 2
        assert len(bodies) == fetches
        assert bodies[0] == {"mediaFileIds": ["a"]}

    async def test_request_headers(self, upload_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=_progress_body({"a": "completed"}))

        source = _polling(upload_config, handler)
        await source.fetch_progress(["a"], "token")

        assert str(seen[0].url) == "https://api.example.test/functions/v1/get-upload-progress"
        assert seen[0].headers["Authorization"] == "Bearer token"
        assert seen[0].headers["apikey"] == "anon-key"

    async def test_aggregate_status_is_not_trusted(self, upload_config):
        """A 'completed' aggregate with an open file does not converge."""
        responses = [
            _progress_body({"a": "completed", "b": "uploading"}, aggregate="completed"),
            _progress_body({"a": "completed", "b": "failed"}, aggregate="in_progress"),
        ]

        def handler(request):
            return httpx.Response(200, json=responses.pop(0) if len(responses) > 1 else responses[0])

        source = _polling(upload_config, handler)
        changes = []
        tracker = ProgressTracker(source, upload_config, on_change=changes.append)
        tracker.start([MediaRecord(id="a", file_name="a.mp3"), MediaRecord(id="b", file_name="b.mp3")], "t")

        assert await asyncio.wait_for(tracker.wait(), timeout=2) == TrackingOutcome.CONVERGED
        assert len(changes) == 2
        assert changes[0][1].status == UploadStatus.UPLOADING

    async def test_repeated_failures_abort_tracking(self, upload_config):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        source = _polling(upload_config, handler)
        tracker = ProgressTracker(source, upload_config)
        tracker.start([MediaRecord(id="a", file_name="a.mp3")], "t")

        assert await asyncio.wait_for(tracker.wait(), timeout=2) == TrackingOutcome.ERROR_ABORTED
        await asyncio.sleep(upload_config.poll_interval_seconds * 5)
        assert len(calls) == upload_config.max_consecutive_errors

    async def test_error_payload_raises(self, upload_config):
        source = _polling(upload_config, lambda r: httpx.Response(200, json={"success": False, "error": "No access"}))
        with pytest.raises(ProgressCheckError, match="No access"):
            await source.fetch_progress(["a"], "t")

    async def test_network_errors_are_reported(self, upload_config):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        source = _polling(upload_config, handler)
        errors = []
        handle = source.start_tracking(["a"], "t", lambda u: None, errors.append)
        await asyncio.sleep(upload_config.poll_interval_seconds * 3)
        source.stop(handle)
        await handle.wait_closed()

        assert errors
        assert all(isinstance(e, httpx.ConnectError) for e in errors)

    async def test_unexpected_errors_count_toward_abort(self, upload_config):
        """Errors outside the HTTP taxonomy still reach the tracker."""
        calls = []

        def handler(request):
            calls.append(request)
            raise RuntimeError("unexpected transport failure")

        source = _polling(upload_config, handler)
        tracker = ProgressTracker(source, upload_config)
        tracker.start([MediaRecord(id="a", file_name="a.mp3")], "t")

        assert await asyncio.wait_for(tracker.wait(), timeout=2) == TrackingOutcome.ERROR_ABORTED
        assert len(calls) == upload_config.max_consecutive_errors

    async def test_reconciliations_never_overlap(self, upload_config):
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(upload_config.poll_interval_seconds * 3)
            in_flight -= 1
            return httpx.Response(200, json=_progress_body({"a": "uploading"}))

        source = _polling(upload_config, handler)
        handle = source.start_tracking(["a"], "t", lambda u: None, lambda e: None)
        await asyncio.sleep(upload_config.poll_interval_seconds * 12)
        source.stop(handle)
        await handle.wait_closed()

        assert handle.ticks >= 2
        assert peak == 1

    async def test_response_after_stop_is_discarded(self, upload_config):
        gate = asyncio.Event()

        async def handler(request):
            await gate.wait()
            return httpx.Response(200, json=_progress_body({"a": "completed"}))

        source = _polling(upload_config, handler)
        updates = []
        handle = source.start_tracking(["a"], "t", updates.append, lambda e: None)
        await asyncio.sleep(0.01)

        source.stop(handle)
        source.stop(handle)
        gate.set()
        await handle.wait_closed()

        assert updates == []
        assert handle.task.done()


# ======================================================================
# Realtime change feed
# ======================================================================


class FakeFeed:
    """Change feed replaying scripted subscriptions.

    Each script entry is a list of rows, an exception to raise, or
    ``None`` to stay open without events.
    """

    def __init__(self, scripts: list) -> None:
        self.scripts = scripts
        self.subscriptions: list[tuple[str, ...]] = []

    async def subscribe(self, ids):
        self.subscriptions.append(tuple(ids))
        script = self.scripts.pop(0) if self.scripts else None
        if isinstance(script, Exception):
            raise script
        if script is None:
            await asyncio.Event().wait()
        for row in script:
            yield row


class TestRealtimeSource:
    """Row-update events feed the tracker; failures resubscribe."""

    def test_fake_feed_matches_protocol(self):
        assert isinstance(FakeFeed([]), ChangeFeed)

    async def test_rows_converge_tracker(self, upload_config):
        feed = FakeFeed([
            [
                {"id": "a", "upload_status": "uploading"},
                {"id": "other", "upload_status": "completed"},
                {"upload_status": "completed"},
                {"id": "a", "upload_status": "completed", "remote_path": "https://cdn.test/a.mp3"},
                {"id": "b", "upload_status": "failed"},
            ]
        ])
        source = RealtimeProgressSource(feed, upload_config)
        tracker = ProgressTracker(source, upload_config)
        tracker.start([MediaRecord(id="a", file_name="a.mp3"), MediaRecord(id="b", file_name="b.mp3")], "t")

        assert await asyncio.wait_for(tracker.wait(), timeout=2) == TrackingOutcome.CONVERGED
        a, b = tracker.progress
        assert a.status == UploadStatus.COMPLETED
        assert a.upload_result.download_url == "https://cdn.test/a.mp3"
        assert b.status == UploadStatus.FAILED

    async def test_failed_subscription_is_retried(self, upload_config):
        feed = FakeFeed([
            ConnectionError("socket closed"),
            [{"id": "a", "upload_status": "completed"}],
        ])
        source = RealtimeProgressSource(feed, upload_config)
        tracker = ProgressTracker(source, upload_config)
        tracker.start([MediaRecord(id="a", file_name="a.mp3")], "t")

        assert await asyncio.wait_for(tracker.wait(), timeout=2) == TrackingOutcome.CONVERGED
        assert feed.subscriptions == [("a",), ("a",)]
        assert tracker.consecutive_errors == 0

    async def test_resubscribe_waits_configured_delay(self, upload_config):
        upload_config.realtime_reconnect_seconds = 0.25
        delays = []

        async def record_sleep(delay):
            delays.append(delay)

        feed = FakeFeed([
            ConnectionError("socket closed"),
            [{"id": "a", "upload_status": "completed"}],
        ])
        source = RealtimeProgressSource(feed, upload_config, sleep=record_sleep)
        tracker = ProgressTracker(source, upload_config)
        tracker.start([MediaRecord(id="a", file_name="a.mp3")], "t")

        assert await asyncio.wait_for(tracker.wait(), timeout=2) == TrackingOutcome.CONVERGED
        assert delays == [0.25]

    async def test_stop_cancels_open_subscription(self, upload_config):
        feed = FakeFeed([None])
        source = RealtimeProgressSource(feed, upload_config)
        handle = source.start_tracking(["a"], "t", lambda u: None, lambda e: None)
        await asyncio.sleep(0.01)

        source.stop(handle)
        await handle.wait_closed()

        assert handle.task.done()
        assert feed.subscriptions == [("a",)]
