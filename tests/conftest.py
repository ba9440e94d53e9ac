"""Shared pytest fixtures for the bulk upload tests.

Provides a fast-cadence upload config, staged audio files on disk,
request entries built from them, and a hand-driven progress source.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from pathlib import Path

import pytest

from mediaupload.models import (
    BulkUploadFile,
    BulkUploadMetadata,
    FileStatusUpdate,
    UploadConfig,
    UploadFile,
    UploadStatus,
)
from mediaupload.upload.sources import TrackingHandle


@pytest.fixture
def upload_config() -> UploadConfig:
    """Config with short timers so tests run in milliseconds."""
    return UploadConfig(
        base_url="https://api.example.test",
        api_key="anon-key",
        poll_interval_seconds=0.01,
        max_tracking_seconds=5.0,
        cleanup_grace_seconds=0.01,
        realtime_reconnect_seconds=0.01,
    )


@pytest.fixture
def make_upload_file(tmp_path: Path):
    """Factory writing a small audio file and returning a fully-selected UploadFile."""

    def _make(
        name: str = "GEN_001.mp3",
        content: bytes = b"ID3" + b"\x00" * 64,
        duration: float | None = 42.5,
        end_verse_id: str | None = "verse-31",
    ) -> UploadFile:
        path = tmp_path / name
        path.write_bytes(content)
        return UploadFile(
            id=uuid.uuid4().hex,
            path=path,
            name=name,
            size=len(content),
            mime_type="audio/mpeg",
            duration=duration,
            selected_book_id="book-gen",
            selected_chapter_id="chapter-gen-1",
            selected_start_verse_id="verse-1",
            selected_end_verse_id=end_verse_id,
        )

    return _make


@pytest.fixture
def make_bulk_file(make_upload_file):
    """Factory returning a BulkUploadFile backed by a real file on disk."""

    def _make(name: str = "GEN_001.mp3", **overrides) -> BulkUploadFile:
        file = make_upload_file(name)
        fields = {
            "language_entity_id": "lang-1",
            "audio_version_id": "version-1",
            "file_name": name,
            "duration_seconds": file.duration,
            "chapter_id": file.selected_chapter_id,
            "start_verse_id": file.selected_start_verse_id,
            "end_verse_id": file.selected_end_verse_id,
        }
        fields.update(overrides)
        return BulkUploadFile(file=file, metadata=BulkUploadMetadata(**fields))

    return _make


class FakeProgressSource:
    """Progress source driven by the test instead of a network."""

    def __init__(self) -> None:
        self.handles: list[TrackingHandle] = []
        self.stopped: list[TrackingHandle] = []
        self._on_update = None
        self._on_error = None

    def start_tracking(self, ids: Sequence[str], auth_token: str, on_update, on_error) -> TrackingHandle:
        handle = TrackingHandle(ids=tuple(ids))
        self.handles.append(handle)
        self.auth_token = auth_token
        self._on_update = on_update
        self._on_error = on_error
        return handle

    def stop(self, handle: TrackingHandle) -> None:
        if not handle.stopped:
            handle.stopped = True
            self.stopped.append(handle)

    def push(self, **statuses: str) -> None:
        """Deliver one reconciliation result mapping id -> status string."""
        self._on_update(
            [
                FileStatusUpdate(media_file_id=media_id, status=UploadStatus(status))
                for media_id, status in statuses.items()
            ]
        )

    def push_updates(self, updates: list[FileStatusUpdate]) -> None:
        self._on_update(updates)

    def fail(self, exc: BaseException | None = None) -> None:
        self._on_error(exc or RuntimeError("progress endpoint unreachable"))


@pytest.fixture
def fake_source() -> FakeProgressSource:
    return FakeProgressSource()
