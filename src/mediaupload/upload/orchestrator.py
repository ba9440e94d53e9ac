"""Batch lifecycle owner for bulk media uploads.

Composes the upload primitives (transport, progress source, tracker,
record store) into one long-lived object the application creates at
startup and passes to whatever needs to start or observe uploads:

* At most one batch is active; a second submission fails fast
* Observers get an all-pending view before the network call resolves
* A failed submission always leaves the orchestrator idle
* A converged batch is released after a short grace delay
* Uploads in flight before a restart can be re-attached
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone

import httpx

from mediaupload.models import (
    BatchPhase,
    BatchReport,
    BatchSummary,
    BulkUploadFile,
    BulkUploadProgress,
    BulkUploadResponse,
    MediaRecord,
    TrackingOutcome,
    UploadConfig,
    UploadStatus,
)
from mediaupload.upload.exceptions import UploadBusyError, UploadError
from mediaupload.upload.resume import MediaRecordStore
from mediaupload.upload.sources import ProgressSource
from mediaupload.upload.tracker import ProgressTracker
from mediaupload.upload.transport import BulkUploadTransport

logger = logging.getLogger(__name__)

ProgressListener = Callable[[tuple[BulkUploadProgress, ...]], None]
CompletionListener = Callable[[BatchReport], None]

_PHASE_FOR_OUTCOME: dict[TrackingOutcome, BatchPhase] = {
    TrackingOutcome.CONVERGED: BatchPhase.COMPLETED,
    TrackingOutcome.TIMED_OUT: BatchPhase.TIMED_OUT,
    TrackingOutcome.ERROR_ABORTED: BatchPhase.ABORTED,
    TrackingOutcome.CANCELLED: BatchPhase.IDLE,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UploadOrchestrator:
    """Single entry point for submitting and tracking bulk uploads.

    Usage::

        orchestrator = UploadOrchestrator(transport, PollingProgressSource(config), config)
        orchestrator.add_progress_listener(render)
        response = await orchestrator.start_bulk_upload(build.files, session.access_token)

    Args:
        transport: Sends batches to the bulk upload endpoint.
        source: Progress source handed to every tracker.
        config: Pipeline configuration.
        record_store: Optional lookup used by :meth:`resume_uploads`.
        clock: Returns the current UTC time (tests pin it).
    """

    def __init__(
        self,
        transport: BulkUploadTransport,
        source: ProgressSource,
        config: UploadConfig,
        record_store: MediaRecordStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._transport = transport
        self._source = source
        self._config = config
        self._record_store = record_store
        self._clock = clock

        self._active = False
        self._phase = BatchPhase.IDLE
        self._batch_token = 0
        self._tracker: ProgressTracker | None = None
        self._progress: tuple[BulkUploadProgress, ...] = ()
        # Files rejected at submission: shown as failed, never tracked.
        self._untracked: tuple[BulkUploadProgress, ...] = ()
        self._cleanup_timer: asyncio.TimerHandle | None = None
        self._last_error: BaseException | None = None
        self._last_report: BatchReport | None = None

        self._progress_listeners: list[ProgressListener] = []
        self._completion_listeners: list[CompletionListener] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_progress_listener(self, listener: ProgressListener) -> None:
        self._progress_listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        if listener in self._progress_listeners:
            self._progress_listeners.remove(listener)

    def add_completion_listener(self, listener: CompletionListener) -> None:
        self._completion_listeners.append(listener)

    def remove_completion_listener(self, listener: CompletionListener) -> None:
        if listener in self._completion_listeners:
            self._completion_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def phase(self) -> BatchPhase:
        return self._phase

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def progress(self) -> tuple[BulkUploadProgress, ...]:
        return self._progress

    @property
    def summary(self) -> BatchSummary:
        return BatchSummary.from_progress(self._progress)

    @property
    def is_complete(self) -> bool:
        return self.summary.is_complete

    @property
    def has_failures(self) -> bool:
        return self.summary.has_failures

    @property
    def last_error(self) -> BaseException | None:
        """The error that ended the most recent submission attempt, if any."""
        return self._last_error

    @property
    def last_report(self) -> BatchReport | None:
        """Final snapshot of the most recently finished batch."""
        return self._last_report

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def start_bulk_upload(
        self,
        files: Sequence[BulkUploadFile],
        auth_token: str,
    ) -> BulkUploadResponse:
        """Submit a batch and start tracking it.

        Args:
            files: Request entries from :class:`UploadRequestBuilder`.
            auth_token: Bearer token for the current session.

        Returns:
            The raw submission response, for information only.

        Raises:
            UploadBusyError: If a batch is already active. Nothing about
                the active batch changes.
            UploadError: Whatever the transport raised; the orchestrator
                is idle again when it propagates.
        """
        # Check-then-set with no await in between.
        if self._active:
            raise UploadBusyError()
        self._active = True

        token = self._begin_batch()
        self._phase = BatchPhase.SUBMITTING
        files = list(files)
        self._set_progress(
            tuple(
                BulkUploadProgress(media_file_id="", file_name=f.metadata.file_name)
                for f in files
            )
        )
        logger.info("Starting bulk upload of %d files", len(files))

        try:
            response = await self._transport.submit(files, auth_token)
        except (Exception, asyncio.CancelledError) as exc:
            if token == self._batch_token:
                self._reset_after_failure(exc)
            raise

        if token != self._batch_token:
            logger.info("Discarding submission response for a cancelled batch %s", response.batch_id)
            return response

        tracked = [r for r in response.media_records if r.id]
        self._untracked = tuple(
            BulkUploadProgress(
                media_file_id="",
                file_name=r.file_name,
                status=UploadStatus.FAILED,
                error=r.error,
            )
            for r in response.media_records
            if not r.id
        )
        if self._untracked:
            logger.warning(
                "%d of %d files were rejected at submission",
                len(self._untracked),
                len(response.media_records),
            )
        self._set_progress(
            tuple(
                BulkUploadProgress(
                    media_file_id=r.id,
                    file_name=r.file_name,
                    status=UploadStatus.PENDING if r.status == UploadStatus.UNKNOWN else r.status,
                    error=r.error,
                )
                for r in tracked
            )
            + self._untracked
        )
        self._start_tracker(tracked, auth_token, token)
        return response

    def _begin_batch(self) -> int:
        self._cancel_cleanup_timer()
        self._batch_token += 1
        self._last_error = None
        self._untracked = ()
        return self._batch_token

    def _reset_after_failure(self, exc: BaseException) -> None:
        if isinstance(exc, asyncio.CancelledError):
            logger.warning("Bulk upload submission cancelled")
        else:
            logger.error("Bulk upload submission failed: %s", exc)
        self._active = False
        self._phase = BatchPhase.IDLE
        self._last_error = exc
        self._set_progress(())

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def _start_tracker(self, records: Sequence[MediaRecord], auth_token: str, token: int) -> None:
        tracker = ProgressTracker(
            self._source,
            self._config,
            on_change=functools.partial(self._on_tracker_change, token),
            on_finished=functools.partial(self._on_tracker_finished, token),
        )
        self._tracker = tracker
        self._phase = BatchPhase.TRACKING
        # May finish synchronously when every record is already terminal.
        tracker.start(records, auth_token)

    def _on_tracker_change(self, token: int, progress: tuple[BulkUploadProgress, ...]) -> None:
        if token != self._batch_token:
            return
        self._set_progress(progress + self._untracked)

    def _on_tracker_finished(self, token: int, outcome: TrackingOutcome) -> None:
        if token != self._batch_token:
            return
        tracker = self._tracker
        self._tracker = None
        self._active = False
        self._phase = _PHASE_FOR_OUTCOME[outcome]

        progress = tracker.progress + self._untracked if tracker is not None else self._progress
        self._progress = progress
        report = BatchReport(
            outcome=outcome,
            progress=progress,
            summary=BatchSummary.from_progress(progress),
            finished_at=self._clock(),
        )
        self._last_report = report

        for listener in list(self._completion_listeners):
            try:
                listener(report)
            except Exception:
                logger.exception("Completion listener failed")

        if outcome == TrackingOutcome.CONVERGED:
            loop = asyncio.get_running_loop()
            self._cleanup_timer = loop.call_later(
                self._config.cleanup_grace_seconds,
                self._auto_cleanup,
                token,
            )
        else:
            logger.warning(
                "Tracking ended (%s); keeping last-known status of %d files",
                outcome.value,
                len(progress),
            )

    def _auto_cleanup(self, token: int) -> None:
        self._cleanup_timer = None
        if token != self._batch_token or self._active:
            return
        logger.info("Releasing completed batch")
        self._phase = BatchPhase.IDLE
        self._set_progress(())

    async def wait_for_tracking(self) -> TrackingOutcome | None:
        """Wait for the active tracker to finish; ``None`` if nothing is tracked."""
        tracker = self._tracker
        if tracker is None:
            return None
        return await tracker.wait()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def stop_tracking(self) -> None:
        """Stop tracking and free the orchestrator for a new batch.

        The last-known progress view is kept. Idempotent, and safe while a
        submission or reconciliation is in flight: its late result is
        discarded.
        """
        self._batch_token += 1
        self._cancel_cleanup_timer()
        tracker = self._tracker
        self._tracker = None
        if tracker is not None:
            tracker.stop()
        if self._active:
            logger.info("Upload tracking stopped")
        self._active = False
        if self._phase in (BatchPhase.SUBMITTING, BatchPhase.TRACKING):
            self._phase = BatchPhase.IDLE

    def cleanup(self) -> None:
        """Stop tracking and release all per-batch state. Idempotent."""
        self.stop_tracking()
        self._phase = BatchPhase.IDLE
        self._untracked = ()
        self._set_progress(())

    def _cancel_cleanup_timer(self) -> None:
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    async def resume_uploads(self, auth_token: str, project_id: str | None = None) -> list[str]:
        """Re-attach tracking to uploads still in flight server-side.

        Only non-terminal records created within
        ``config.resume_window_seconds`` are resumed. Best-effort: when a
        batch is active, no store is configured, nothing qualifies, or
        the lookup fails, nothing happens and ``[]`` is returned.

        Returns:
            The media file ids now being tracked.
        """
        if self._active:
            logger.info("Not resuming uploads while a batch is active")
            return []
        if self._record_store is None:
            return []

        cutoff = self._clock() - timedelta(seconds=self._config.resume_window_seconds)
        try:
            records = await self._record_store.find_in_flight(cutoff, auth_token, project_id)
        except (httpx.HTTPError, UploadError, ValueError) as exc:
            logger.warning("Could not look up resumable uploads: %s", exc)
            return []

        resumable = [
            r
            for r in records
            if r.status in (UploadStatus.PENDING, UploadStatus.UPLOADING)
            and r.created_at is not None
            and _as_utc(r.created_at) >= cutoff
        ]
        if not resumable:
            logger.debug("No resumable uploads found")
            return []
        if self._active:
            logger.info("A batch started while looking up resumable uploads; not resuming")
            return []

        self._active = True
        token = self._begin_batch()
        self._set_progress(
            tuple(
                BulkUploadProgress(media_file_id=r.id, file_name=r.file_name, status=r.status)
                for r in resumable
            )
        )
        ids = [r.id for r in resumable]
        logger.info("Resuming progress tracking for %d uploads", len(ids))
        self._start_tracker([r.to_media_record() for r in resumable], auth_token, token)
        return ids

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_progress(self, progress: tuple[BulkUploadProgress, ...]) -> None:
        if progress == self._progress:
            return
        self._progress = progress
        for listener in list(self._progress_listeners):
            try:
                listener(progress)
            except Exception:
                logger.exception("Progress listener failed")
