"""Pydantic models for the backend wire payloads.

The edge functions speak camelCase; the PostgREST table speaks snake_case.
Every model ignores unknown keys and converts to the frozen domain
dataclasses in :mod:`mediaupload.models`, so nothing outside this module
handles raw dicts.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mediaupload.models import (
    BulkUploadResponse,
    FileStatusUpdate,
    MediaRecord,
    UploadStatus,
    parse_status,
)


UNREGISTERED_ERROR = "Upload was not registered by the server"


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Bulk upload endpoint
# ---------------------------------------------------------------------------


class MediaRecordModel(_WireModel):
    """One acknowledged file in a bulk upload response."""

    media_file_id: str | None = Field(alias="mediaFileId", default=None)
    file_name: str = Field(alias="fileName")
    status: UploadStatus = UploadStatus.PENDING
    version: int | None = None
    error: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> UploadStatus:
        return parse_status(value)

    def to_record(self) -> MediaRecord:
        # A file the backend could not register comes back without an id.
        if not self.media_file_id:
            return MediaRecord(
                id="",
                file_name=self.file_name,
                status=UploadStatus.FAILED,
                version=self.version,
                error=self.error or UNREGISTERED_ERROR,
            )
        return MediaRecord(
            id=self.media_file_id,
            file_name=self.file_name,
            status=self.status,
            version=self.version,
            error=self.error,
        )


class BulkUploadDataModel(_WireModel):
    total_files: int = Field(alias="totalFiles", default=0)
    batch_id: str = Field(alias="batchId", default="")
    media_records: list[MediaRecordModel] = Field(alias="mediaRecords", default_factory=list)


class BulkUploadResponseModel(_WireModel):
    """Envelope returned by the bulk upload edge function."""

    success: bool = False
    data: BulkUploadDataModel | None = None
    error: str | None = None
    details: str | None = None

    def to_response(self) -> BulkUploadResponse:
        data = self.data or BulkUploadDataModel()
        return BulkUploadResponse(
            success=self.success,
            total_files=data.total_files or len(data.media_records),
            batch_id=data.batch_id,
            media_records=tuple(r.to_record() for r in data.media_records),
            error=self.error,
            details=self.details,
        )


# ---------------------------------------------------------------------------
# Progress endpoint
# ---------------------------------------------------------------------------


class ProgressFileModel(_WireModel):
    """Per-file entry of a progress response."""

    media_file_id: str = Field(alias="mediaFileId")
    file_name: str | None = Field(alias="fileName", default=None)
    status: UploadStatus = UploadStatus.UNKNOWN
    download_url: str | None = Field(alias="downloadUrl", default=None)
    error: str | None = None
    created_at: datetime | None = Field(alias="createdAt", default=None)
    updated_at: datetime | None = Field(alias="updatedAt", default=None)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> UploadStatus:
        return parse_status(value)

    def to_update(self) -> FileStatusUpdate:
        return FileStatusUpdate(
            media_file_id=self.media_file_id,
            status=self.status,
            file_name=self.file_name,
            download_url=self.download_url,
            error=self.error,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class AggregateProgressModel(_WireModel):
    # Informational only; per-file tallies decide convergence.
    percentage: float = 0.0
    status: str | None = None


class ProgressDataModel(_WireModel):
    total_files: int = Field(alias="totalFiles", default=0)
    pending_count: int = Field(alias="pendingCount", default=0)
    uploading_count: int = Field(alias="uploadingCount", default=0)
    completed_count: int = Field(alias="completedCount", default=0)
    failed_count: int = Field(alias="failedCount", default=0)
    progress: AggregateProgressModel | None = None
    files: list[ProgressFileModel] = Field(default_factory=list)


class ProgressResponseModel(_WireModel):
    """Envelope returned by the progress edge function."""

    success: bool = False
    data: ProgressDataModel | None = None
    error: str | None = None

    def to_updates(self) -> list[FileStatusUpdate]:
        if self.data is None:
            return []
        return [f.to_update() for f in self.data.files]


# ---------------------------------------------------------------------------
# media_files table (PostgREST and realtime change rows)
# ---------------------------------------------------------------------------


class MediaFileRowModel(_WireModel):
    """A ``media_files`` row as returned by PostgREST or the change feed."""

    id: str
    upload_status: UploadStatus = UploadStatus.UNKNOWN
    created_at: datetime | None = None
    updated_at: datetime | None = None
    project_id: str | None = None
    local_path: str | None = None
    remote_path: str | None = None
    version: int | None = None
    file_size: int | None = None
    duration_seconds: float | None = None

    @field_validator("upload_status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> UploadStatus:
        return parse_status(value)

    @property
    def file_name(self) -> str:
        path = self.local_path or self.remote_path or ""
        return path.rsplit("/", 1)[-1] or self.id

    def to_update(self) -> FileStatusUpdate:
        return FileStatusUpdate(
            media_file_id=self.id,
            status=self.upload_status,
            file_name=self.file_name,
            download_url=self.remote_path,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
