"""Exception hierarchy for the bulk upload pipeline.

Submission failures are split the same way the retry policy sees them:
:class:`TransientError` (and its :class:`RateLimitError` subclass) may
succeed on retry, :class:`PermanentError` never will.
"""

from __future__ import annotations


class UploadError(Exception):
    """Base class for every error raised by this package."""


class UploadValidationError(UploadError):
    """Raised when a batch is rejected before any network call.

    Attributes:
        errors: Every problem found, in input order.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Upload validation failed")


class SessionContextError(UploadValidationError):
    """Raised when the language entity or audio version selection is missing."""


class UploadBusyError(UploadError):
    """Raised when a batch is submitted while another one is active."""

    def __init__(self, message: str = "Another upload is already in progress") -> None:
        super().__init__(message)


class SessionUnavailableError(UploadError):
    """Raised when no authenticated session can be obtained."""


class SubmissionError(UploadError):
    """Raised when the bulk upload endpoint rejects or fails a submission.

    Attributes:
        status_code: HTTP status, or ``None`` for network-level failures.
        details: Extra error text returned by the backend, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class TransientError(SubmissionError):
    """Network failures, timeouts, and 5xx responses that may succeed on retry."""


class RateLimitError(TransientError):
    """Raised when the backend answers 429."""


class PermanentError(SubmissionError):
    """Client errors and malformed responses that must not be retried."""


class AuthenticationError(PermanentError):
    """Raised on 401/403 responses."""


class ProgressCheckError(UploadError):
    """Raised when a progress reconciliation returns an error payload."""
