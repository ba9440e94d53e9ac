"""Rich terminal rendering of bulk upload progress.

:class:`RichUploadProgress` is a plain progress listener: register it on an
:class:`UploadOrchestrator` and it redraws a single bar whenever the
progress snapshot changes. Its :meth:`~RichUploadProgress.on_complete`
method doubles as a completion listener that prints the final tally.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from mediaupload.models import BatchReport, BatchSummary, BulkUploadProgress, TrackingOutcome

_OUTCOME_STYLE: dict[TrackingOutcome, str] = {
    TrackingOutcome.CONVERGED: "green",
    TrackingOutcome.TIMED_OUT: "yellow",
    TrackingOutcome.ERROR_ABORTED: "red",
    TrackingOutcome.CANCELLED: "dim",
}


def format_status(summary: BatchSummary) -> str:
    """One-line tally for the status column."""
    parts = [f"{summary.completed} done"]
    if summary.failed:
        parts.append(f"{summary.failed} failed")
    if summary.uploading:
        parts.append(f"{summary.uploading} uploading")
    if summary.pending:
        parts.append(f"{summary.pending} pending")
    return ", ".join(parts)


class RichUploadProgress:
    """Single-bar Rich display fed by progress snapshots.

    Usage::

        display = RichUploadProgress()
        orchestrator.add_progress_listener(display)
        orchestrator.add_completion_listener(display.on_complete)
        with display:
            await orchestrator.start_bulk_upload(files, token)
            await orchestrator.wait_for_tracking()
    """

    def __init__(self, console: Console | None = None, description: str = "Uploading") -> None:
        self._description = description
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )
        self._task: TaskID | None = None
        self.last_summary = BatchSummary()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()
        self._ensure_task()

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> RichUploadProgress:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Listener interface
    # ------------------------------------------------------------------

    def __call__(self, progress: tuple[BulkUploadProgress, ...]) -> None:
        self.update(progress)

    def update(self, progress: tuple[BulkUploadProgress, ...]) -> None:
        summary = BatchSummary.from_progress(progress)
        self.last_summary = summary
        task = self._ensure_task()
        self._progress.update(
            task,
            total=summary.total,
            completed=summary.completed + summary.failed,
            status=format_status(summary) if summary.total else "waiting...",
        )

    def on_complete(self, report: BatchReport) -> None:
        summary = report.summary
        style = _OUTCOME_STYLE[report.outcome]
        self._progress.console.print(
            f"[{style}]Upload {report.outcome.value.replace('_', ' ')}[/{style}]: "
            f"{summary.completed} completed, {summary.failed} failed of {summary.total}"
        )
        for record in report.progress:
            if record.error:
                self._progress.console.print(f"  [red]{escape(record.file_name)}[/red]: {escape(record.error)}")

    def _ensure_task(self) -> TaskID:
        if self._task is None:
            self._task = self._progress.add_task(self._description, total=None, status="waiting...")
        return self._task
