"""Bulk media upload orchestration and progress reconciliation."""

__version__ = "0.1.0"

from mediaupload.models import (
    BatchPhase,
    BatchReport,
    BatchSummary,
    BulkUploadFile,
    BulkUploadMetadata,
    BulkUploadProgress,
    BulkUploadResponse,
    Confidence,
    MediaRecord,
    SessionContext,
    TrackingOutcome,
    UploadConfig,
    UploadFile,
    UploadStatus,
    parse_status,
)

__all__ = [
    "BatchPhase",
    "BatchReport",
    "BatchSummary",
    "BulkUploadFile",
    "BulkUploadMetadata",
    "BulkUploadProgress",
    "BulkUploadResponse",
    "Confidence",
    "MediaRecord",
    "SessionContext",
    "TrackingOutcome",
    "UploadConfig",
    "UploadFile",
    "UploadStatus",
    "__version__",
    "parse_status",
]
