"""State machines for per-file upload status and the tracking lifecycle.

Both machines are validation tools only: they hold no data and run no
callbacks. :class:`ProgressTracker` asks them whether a move is legal and
keeps the actual state in its own records.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from mediaupload.models import UploadStatus


class FileStatusSM(StateMachine):
    """Monotonic lifecycle of one file on the backend.

    States:
        pending   -- Accepted by the bulk endpoint, not yet picked up.
        uploading -- Transfer to storage in progress.
        completed -- Stored and registered.
        failed    -- Rejected or errored on the backend.

    A reconciliation may skip ``uploading`` entirely, so both terminal
    states are reachable from ``pending``.
    """

    pending = State("pending", initial=True, value="pending")
    uploading = State("uploading", value="uploading")
    completed = State("completed", final=True, value="completed")
    failed = State("failed", final=True, value="failed")

    mark_uploading = pending.to(uploading)
    complete = pending.to(completed) | uploading.to(completed)
    fail = pending.to(failed) | uploading.to(failed)


_EVENT_FOR_TARGET: dict[UploadStatus, str] = {
    UploadStatus.UPLOADING: "mark_uploading",
    UploadStatus.COMPLETED: "complete",
    UploadStatus.FAILED: "fail",
}


def create_file_fsm(current_status: UploadStatus | str) -> FileStatusSM:
    """Create a file FSM positioned at *current_status*."""
    return FileStatusSM(start_value=UploadStatus(current_status).value)


def is_legal_transition(current: UploadStatus, target: UploadStatus) -> bool:
    """Whether a file may move from *current* to *target*.

    Equal statuses and anything involving ``UNKNOWN`` are not transitions.
    """
    event = _EVENT_FOR_TARGET.get(target)
    if event is None or current == UploadStatus.UNKNOWN:
        return False
    fsm = create_file_fsm(current)
    try:
        fsm.send(event)
    except TransitionNotAllowed:
        return False
    return True


class TrackingLifecycleSM(StateMachine):
    """Lifecycle of one batch's progress tracking.

    ``idle -> tracking -> converged | timed_out | error_aborted | cancelled``.
    Every exit state is final; a tracker is never restarted.
    """

    idle = State("idle", initial=True, value="idle")
    tracking = State("tracking", value="tracking")
    converged = State("converged", final=True, value="converged")
    timed_out = State("timed_out", final=True, value="timed_out")
    error_aborted = State("error_aborted", final=True, value="error_aborted")
    cancelled = State("cancelled", final=True, value="cancelled")

    begin = idle.to(tracking)
    converge = idle.to(converged) | tracking.to(converged)
    time_out = tracking.to(timed_out)
    abort = tracking.to(error_aborted)
    cancel = idle.to(cancelled) | tracking.to(cancelled)
