"""Tests for the Rich progress listener and optimistic placeholder cache."""

from __future__ import annotations

import io
from datetime import datetime, timezone

from rich.console import Console

from mediaupload.models import (
    BatchReport,
    BatchSummary,
    BulkUploadProgress,
    ParsedFilename,
    TrackingOutcome,
    UploadStatus,
)
from mediaupload.upload.optimistic import OptimisticEntry, OptimisticEntryCache, entries_from_files
from mediaupload.upload.progress import RichUploadProgress, format_status


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, force_terminal=False, width=120), buffer


def _snapshot() -> tuple[BulkUploadProgress, ...]:
    return (
        BulkUploadProgress("a", "GEN_001.mp3", UploadStatus.COMPLETED),
        BulkUploadProgress("b", "GEN_002.mp3", UploadStatus.UPLOADING),
        BulkUploadProgress("c", "GEN_[3].mp3", UploadStatus.FAILED, error="Transcode [failed]"),
    )


class TestRichUploadProgress:
    def test_format_status(self):
        summary = BatchSummary(total=4, pending=1, uploading=1, completed=1, failed=1)
        assert format_status(summary) == "1 done, 1 failed, 1 uploading, 1 pending"
        assert format_status(BatchSummary(total=2, completed=2)) == "2 done"

    def test_update_tracks_summary(self):
        console, _ = _console()
        display = RichUploadProgress(console=console)
        display(_snapshot())
        assert display.last_summary.total == 3
        assert display.last_summary.completed == 1
        assert display.last_summary.failed == 1

    def test_on_complete_prints_tally_and_errors(self):
        console, buffer = _console()
        display = RichUploadProgress(console=console)
        progress = _snapshot()
        report = BatchReport(
            outcome=TrackingOutcome.TIMED_OUT,
            progress=progress,
            summary=BatchSummary.from_progress(progress),
            finished_at=datetime(2026, 10, 17, tzinfo=timezone.utc),
        )

        display.on_complete(report)

        output = buffer.getvalue()
        assert "Upload timed out: 1 completed, 1 failed of 3" in output
        assert "GEN_[3].mp3: Transcode [failed]" in output


class TestOptimisticEntryCache:
    def test_entries_from_parsed_hints(self, make_upload_file):
        staged = make_upload_file("GEN_001.mp3")
        staged.parsed = ParsedFilename("GEN_001.mp3", book="Genesis", chapter=1, start_verse=1, end_verse=31)
        bare = make_upload_file("unknown.mp3")

        first, second = entries_from_files([staged, bare])

        assert (first.book_name, first.chapter_number, first.end_verse_number) == ("Genesis", 1, 31)
        assert second.file_name == "unknown.mp3"
        assert second.book_name is None

    def test_add_and_remove_by_project(self):
        cache = OptimisticEntryCache()
        cache.add_optimistic_entries("p1", [OptimisticEntry("a.mp3"), OptimisticEntry("b.mp3")])
        cache.add_optimistic_entries("p2", [OptimisticEntry("c.mp3")])
        cache.add_optimistic_entries("p1", [OptimisticEntry("a.mp3", book_name="Exodus")])

        assert [e.file_name for e in cache.entries("p1")] == ["a.mp3", "b.mp3"]
        assert cache.entries("p1")[0].book_name == "Exodus"

        cache.remove_optimistic_entries("p1", ["a.mp3", "missing.mp3"])
        assert [e.file_name for e in cache.entries("p1")] == ["b.mp3"]

        cache.remove_optimistic_entries("p2")
        assert cache.entries("p2") == []
        cache.remove_optimistic_entries("nope", ["x"])
