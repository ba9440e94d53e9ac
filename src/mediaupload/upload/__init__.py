"""Bulk upload submission and progress reconciliation.

Public API
----------
.. autoclass:: UploadOrchestrator
.. autoclass:: BulkUploadTransport
.. autoclass:: UploadRequestBuilder
.. autoclass:: ProgressTracker
.. autoclass:: PollingProgressSource
.. autoclass:: RealtimeProgressSource
.. autoclass:: RestMediaRecordStore
.. autoclass:: OptimisticEntryCache
.. autoclass:: RichUploadProgress
"""

from mediaupload.upload.exceptions import (
    AuthenticationError,
    PermanentError,
    ProgressCheckError,
    RateLimitError,
    SessionContextError,
    SessionUnavailableError,
    SubmissionError,
    TransientError,
    UploadBusyError,
    UploadError,
    UploadValidationError,
)
from mediaupload.upload.optimistic import OptimisticEntry, OptimisticEntryCache, entries_from_files
from mediaupload.upload.orchestrator import UploadOrchestrator
from mediaupload.upload.progress import RichUploadProgress
from mediaupload.upload.request_builder import BuildResult, DroppedFile, UploadRequestBuilder
from mediaupload.upload.resume import MediaRecordStore, ResumableRecord, RestMediaRecordStore
from mediaupload.upload.sources import (
    ChangeFeed,
    PollingProgressSource,
    ProgressSource,
    RealtimeProgressSource,
    TrackingHandle,
)
from mediaupload.upload.tracker import ProgressTracker
from mediaupload.upload.transport import BulkUploadTransport, classify_http_error, is_retryable

__all__ = [
    "AuthenticationError",
    "BuildResult",
    "BulkUploadTransport",
    "ChangeFeed",
    "DroppedFile",
    "MediaRecordStore",
    "OptimisticEntry",
    "OptimisticEntryCache",
    "PermanentError",
    "PollingProgressSource",
    "ProgressCheckError",
    "ProgressSource",
    "ProgressTracker",
    "RateLimitError",
    "RealtimeProgressSource",
    "RestMediaRecordStore",
    "ResumableRecord",
    "RichUploadProgress",
    "SessionContextError",
    "SessionUnavailableError",
    "SubmissionError",
    "TrackingHandle",
    "TransientError",
    "UploadBusyError",
    "UploadError",
    "UploadOrchestrator",
    "UploadRequestBuilder",
    "UploadValidationError",
    "classify_http_error",
    "entries_from_files",
    "is_retryable",
]
