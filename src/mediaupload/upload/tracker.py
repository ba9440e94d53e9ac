"""Progress reconciliation for one submitted batch.

:class:`ProgressTracker` owns the per-file progress map seeded from the
submission's media records and merges observations from a
:class:`ProgressSource` into it until one of four exits:

* **converged** -- every record is ``completed`` or ``failed``
* **timed_out** -- the hard tracking deadline passed
* **error_aborted** -- too many consecutive reconciliation failures
* **cancelled** -- the owner called :meth:`ProgressTracker.stop`

Every exit cancels the deadline timer and stops the source handle.
Records are never moved to a terminal status the backend did not report.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import replace

from mediaupload.models import (
    BatchSummary,
    BulkUploadProgress,
    FileStatusUpdate,
    MediaRecord,
    TrackingOutcome,
    UploadConfig,
    UploadResult,
    UploadStatus,
)
from mediaupload.upload.fsm import TrackingLifecycleSM, is_legal_transition
from mediaupload.upload.sources import ProgressSource, TrackingHandle

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[tuple[BulkUploadProgress, ...]], None]
FinishedCallback = Callable[[TrackingOutcome], None]

_EXIT_EVENTS: dict[TrackingOutcome, str] = {
    TrackingOutcome.CONVERGED: "converge",
    TrackingOutcome.TIMED_OUT: "time_out",
    TrackingOutcome.ERROR_ABORTED: "abort",
    TrackingOutcome.CANCELLED: "cancel",
}


class ProgressTracker:
    """Converges a seeded progress map to a terminal state.

    Usage::

        tracker = ProgressTracker(source, config, on_change=render)
        tracker.start(response.media_records, auth_token)
        outcome = await tracker.wait()

    Args:
        source: Where status observations come from.
        config: Provides the tracking deadline and error bound.
        on_change: Called with the full progress snapshot whenever at
            least one record changed.
        on_finished: Called once with the exit outcome.
    """

    def __init__(
        self,
        source: ProgressSource,
        config: UploadConfig,
        on_change: ChangeCallback | None = None,
        on_finished: FinishedCallback | None = None,
    ) -> None:
        self._source = source
        self._config = config
        self._on_change = on_change
        self._on_finished = on_finished

        self._fsm = TrackingLifecycleSM()
        self._records: dict[str, BulkUploadProgress] = {}
        self._handle: TrackingHandle | None = None
        self._deadline: asyncio.TimerHandle | None = None
        self._consecutive_errors = 0
        self._outcome: TrackingOutcome | None = None
        self._done = asyncio.Event()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        return self._fsm.current_state.value

    @property
    def is_tracking(self) -> bool:
        return self.state == "tracking"

    @property
    def outcome(self) -> TrackingOutcome | None:
        return self._outcome

    @property
    def progress(self) -> tuple[BulkUploadProgress, ...]:
        return tuple(self._records.values())

    @property
    def summary(self) -> BatchSummary:
        return BatchSummary.from_progress(self.progress)

    @property
    def tracked_ids(self) -> tuple[str, ...]:
        return tuple(self._records)

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, records: Iterable[MediaRecord], auth_token: str) -> None:
        """Seed the progress map and begin tracking.

        Must be called from a running event loop. A seed that is already
        fully terminal converges immediately without starting the source.

        Raises:
            RuntimeError: If the tracker has already been started.
        """
        if self.state != "idle":
            raise RuntimeError(f"Tracker cannot start from state {self.state!r}")

        for record in records:
            status = record.status
            if status == UploadStatus.UNKNOWN:
                logger.warning(
                    "Media record %s has an unrecognised status, tracking it as pending",
                    record.id,
                )
                status = UploadStatus.PENDING
            self._records[record.id] = BulkUploadProgress(
                media_file_id=record.id,
                file_name=record.file_name,
                status=status,
                error=record.error,
            )

        if self._all_terminal():
            logger.info("All %d records already terminal, nothing to track", len(self._records))
            self._finish(TrackingOutcome.CONVERGED)
            return

        self._fsm.begin()
        loop = asyncio.get_running_loop()
        self._deadline = loop.call_later(self._config.max_tracking_seconds, self._on_deadline)
        self._handle = self._source.start_tracking(
            list(self._records),
            auth_token,
            self.apply_updates,
            self.record_error,
        )
        logger.info(
            "Tracking %d media files (deadline %.0fs)",
            len(self._records),
            self._config.max_tracking_seconds,
        )

    def stop(self) -> None:
        """Cancel tracking. Safe to call at any point, any number of times."""
        if self.state in ("idle", "tracking"):
            self._finish(TrackingOutcome.CANCELLED)

    async def wait(self) -> TrackingOutcome:
        """Wait for tracking to exit and return how it ended."""
        await self._done.wait()
        assert self._outcome is not None
        return self._outcome

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def apply_updates(self, updates: Iterable[FileStatusUpdate]) -> bool:
        """Merge one reconciliation result into the progress map.

        Returns:
            True if at least one record changed.
        """
        if not self.is_tracking:
            logger.debug("Discarding progress updates received after tracking ended")
            return False

        changed = False
        for update in updates:
            if self._apply_one(update):
                changed = True

        self._consecutive_errors = 0
        if changed:
            self._notify()
        if self._all_terminal():
            self._finish(TrackingOutcome.CONVERGED)
        return changed

    def _apply_one(self, update: FileStatusUpdate) -> bool:
        current = self._records.get(update.media_file_id)
        if current is None:
            logger.debug("Ignoring update for untracked media file %s", update.media_file_id)
            return False
        if update.status == UploadStatus.UNKNOWN:
            logger.warning("Ignoring unrecognised status for media file %s", update.media_file_id)
            return False
        if update.status == current.status:
            return False
        if not is_legal_transition(current.status, update.status):
            logger.warning(
                "Ignoring %s -> %s for media file %s",
                current.status.value,
                update.status.value,
                update.media_file_id,
            )
            return False

        upload_result = current.upload_result
        if update.status == UploadStatus.COMPLETED and update.download_url:
            upload_result = UploadResult(download_url=update.download_url)

        self._records[update.media_file_id] = replace(
            current,
            file_name=update.file_name or current.file_name,
            status=update.status,
            error=update.error,
            upload_result=upload_result,
        )
        logger.debug(
            "Media file %s: %s -> %s",
            update.media_file_id,
            current.status.value,
            update.status.value,
        )
        return True

    def record_error(self, exc: BaseException) -> None:
        """Count one failed reconciliation; abort once the bound is reached."""
        if not self.is_tracking:
            return
        self._consecutive_errors += 1
        limit = self._config.max_consecutive_errors
        logger.warning(
            "Progress reconciliation failed (%d/%d consecutive): %s",
            self._consecutive_errors,
            limit,
            exc,
        )
        if self._consecutive_errors >= limit:
            logger.error("Too many consecutive progress errors, stopping tracking")
            self._finish(TrackingOutcome.ERROR_ABORTED)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _all_terminal(self) -> bool:
        return all(r.status.is_terminal for r in self._records.values())

    def _on_deadline(self) -> None:
        self._deadline = None
        if not self.is_tracking:
            return
        logger.warning(
            "Progress tracking timed out after %.0fs with %d files unfinished",
            self._config.max_tracking_seconds,
            sum(1 for r in self._records.values() if not r.status.is_terminal),
        )
        self._finish(TrackingOutcome.TIMED_OUT)

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.progress)
        except Exception:
            logger.exception("Progress change callback failed")

    def _finish(self, outcome: TrackingOutcome) -> None:
        self._fsm.send(_EXIT_EVENTS[outcome])
        self._outcome = outcome

        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if self._handle is not None:
            self._source.stop(self._handle)

        summary = self.summary
        logger.info(
            "Progress tracking %s: %d completed, %d failed, %d unfinished of %d",
            outcome.value,
            summary.completed,
            summary.failed,
            summary.pending + summary.uploading,
            summary.total,
        )
        self._done.set()
        if self._on_finished is not None:
            try:
                self._on_finished(outcome)
            except Exception:
                logger.exception("Tracking finished callback failed")
