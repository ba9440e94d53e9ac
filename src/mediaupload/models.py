"""Data models and enums for the bulk media upload pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class UploadStatus(str, Enum):
    """Per-file upload status as reported by the backend.

    ``UNKNOWN`` stands in for any wire value the client does not recognise.
    It is never treated as terminal and never applied to a progress record.
    """

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.COMPLETED, UploadStatus.FAILED)


def parse_status(value: object) -> UploadStatus:
    """Map a wire status string onto :class:`UploadStatus`.

    Unrecognised, empty, or non-string values map to ``UNKNOWN``.
    """
    if isinstance(value, UploadStatus):
        return value
    if not isinstance(value, str):
        return UploadStatus.UNKNOWN
    try:
        return UploadStatus(value.strip().lower())
    except ValueError:
        return UploadStatus.UNKNOWN


class Confidence(str, Enum):
    """Reliability of metadata derived from a filename."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class BatchPhase(str, Enum):
    """Caller-visible lifecycle of the orchestrator's active batch."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    TRACKING = "tracking"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class TrackingOutcome(str, Enum):
    """How a progress tracker left the ``tracking`` state."""

    CONVERGED = "converged"
    TIMED_OUT = "timed_out"
    ERROR_ABORTED = "error_aborted"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Staged files
# ---------------------------------------------------------------------------


@dataclass
class ParsedFilename:
    """Book/chapter/verse hints extracted from a filename."""

    original_filename: str
    book: str | None = None
    chapter: int | None = None
    start_verse: int | None = None
    end_verse: int | None = None
    confidence: Confidence = Confidence.NONE
    pattern: str | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class UploadFile:
    """A local file staged for upload, with its selections and errors.

    Selections stay mutable until the file is handed to the request
    builder; nothing downstream mutates an ``UploadFile``.
    """

    id: str
    path: Path
    name: str
    size: int
    mime_type: str
    duration: float | None = None
    parsed: ParsedFilename | None = None
    validation_errors: list[str] = field(default_factory=list)
    selected_book_id: str | None = None
    selected_chapter_id: str | None = None
    selected_start_verse_id: str | None = None
    selected_end_verse_id: str | None = None

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors

    def missing_selections(self) -> list[str]:
        """Names of the selections that are still empty."""
        selections = {
            "book": self.selected_book_id,
            "chapter": self.selected_chapter_id,
            "start verse": self.selected_start_verse_id,
            "end verse": self.selected_end_verse_id,
        }
        return [name for name, value in selections.items() if not value]

    @property
    def has_all_selections(self) -> bool:
        return not self.missing_selections()

    @property
    def is_upload_eligible(self) -> bool:
        return self.is_valid and self.has_all_selections


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerseTiming:
    """Offset of one verse inside a chapter recording (seconds)."""

    verse_id: str
    start_time: float
    duration: float


@dataclass(frozen=True)
class BulkUploadMetadata:
    """Per-file metadata sent alongside the file stream."""

    language_entity_id: str
    audio_version_id: str
    file_name: str
    duration_seconds: float
    chapter_id: str
    start_verse_id: str
    end_verse_id: str
    verse_timings: tuple[VerseTiming, ...] = ()
    tag_ids: tuple[str, ...] = ()

    def to_wire(self) -> dict[str, object]:
        """Render the JSON object the bulk endpoint expects."""
        payload: dict[str, object] = {
            "fileName": self.file_name,
            "languageEntityId": self.language_entity_id,
            "chapterId": self.chapter_id,
            "startVerseId": self.start_verse_id,
            "endVerseId": self.end_verse_id,
            "durationSeconds": self.duration_seconds,
            "audioVersionId": self.audio_version_id,
        }
        if self.verse_timings:
            payload["verseTimings"] = [
                {
                    "verseId": t.verse_id,
                    "startTime": t.start_time,
                    "endTime": t.start_time + t.duration,
                }
                for t in self.verse_timings
            ]
        if self.tag_ids:
            payload["tagIds"] = list(self.tag_ids)
        return payload


@dataclass(frozen=True)
class BulkUploadFile:
    """A staged file paired with the metadata it will be submitted with."""

    file: UploadFile
    metadata: BulkUploadMetadata


@dataclass(frozen=True)
class SessionContext:
    """Project-level selections shared by every file in a batch."""

    language_entity_id: str | None
    audio_version_id: str | None
    project_id: str | None = None


@dataclass(frozen=True)
class AuthSession:
    """An authenticated backend session."""

    access_token: str
    user_id: str | None = None


# ---------------------------------------------------------------------------
# Response and progress side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MediaRecord:
    """Server-acknowledged identity of one submitted file.

    ``id`` is empty when the backend rejected the file at submission; such a
    record is always ``failed``.
    """

    id: str
    file_name: str
    status: UploadStatus = UploadStatus.PENDING
    version: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class BulkUploadResponse:
    """Result of a successful bulk submission."""

    success: bool
    total_files: int
    batch_id: str
    media_records: tuple[MediaRecord, ...]
    error: str | None = None
    details: str | None = None


@dataclass(frozen=True)
class UploadResult:
    """Where a completed file ended up."""

    download_url: str
    file_size: int = 0
    version: int = 1


@dataclass(frozen=True)
class BulkUploadProgress:
    """Caller-facing progress record for one file.

    ``media_file_id`` is empty until the submission has been acknowledged,
    and stays empty for a file the backend never registered.
    """

    media_file_id: str
    file_name: str
    status: UploadStatus = UploadStatus.PENDING
    error: str | None = None
    upload_result: UploadResult | None = None


@dataclass(frozen=True)
class FileStatusUpdate:
    """One status observation received from a progress source."""

    media_file_id: str
    status: UploadStatus
    file_name: str | None = None
    download_url: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class BatchSummary:
    """Per-status tallies derived from a progress snapshot."""

    total: int = 0
    pending: int = 0
    uploading: int = 0
    completed: int = 0
    failed: int = 0
    unknown: int = 0

    @classmethod
    def from_progress(cls, records: list[BulkUploadProgress] | tuple[BulkUploadProgress, ...]) -> BatchSummary:
        counts = {status: 0 for status in UploadStatus}
        for record in records:
            counts[record.status] += 1
        return cls(
            total=len(records),
            pending=counts[UploadStatus.PENDING],
            uploading=counts[UploadStatus.UPLOADING],
            completed=counts[UploadStatus.COMPLETED],
            failed=counts[UploadStatus.FAILED],
            unknown=counts[UploadStatus.UNKNOWN],
        )

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.completed + self.failed == self.total

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    @property
    def has_active_uploads(self) -> bool:
        return self.pending + self.uploading > 0

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return (self.completed + self.failed) * 100.0 / self.total


@dataclass(frozen=True)
class BatchReport:
    """Final snapshot delivered to completion listeners."""

    outcome: TrackingOutcome
    progress: tuple[BulkUploadProgress, ...]
    summary: BatchSummary
    finished_at: datetime


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class UploadConfig:
    """Configuration for the bulk upload pipeline.

    Controls endpoint locations, batch limits, the submission retry policy,
    progress polling cadence, and the tracking and resume windows.
    """

    base_url: str = "http://localhost:54321"
    api_key: str | None = None
    upload_path: str = "/functions/v1/upload-bible-chapter-audio-bulk"
    progress_path: str = "/functions/v1/get-upload-progress"
    records_path: str = "/rest/v1/media_files"
    request_timeout_seconds: float = 300.0
    max_batch_size: int = 80
    max_retries: int = 3
    retry_initial_delay: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay: float = 30.0
    poll_interval_seconds: float = 2.0
    max_tracking_seconds: float = 600.0
    max_consecutive_errors: int = 5
    cleanup_grace_seconds: float = 2.0
    resume_window_seconds: float = 7200.0
    realtime_reconnect_seconds: float = 5.0

    @property
    def upload_url(self) -> str:
        return self.base_url.rstrip("/") + self.upload_path

    @property
    def progress_url(self) -> str:
        return self.base_url.rstrip("/") + self.progress_path

    @property
    def records_url(self) -> str:
        return self.base_url.rstrip("/") + self.records_path
