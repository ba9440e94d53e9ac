"""HTTP transport for the bulk upload edge function.

One ``submit`` call sends a whole batch as a single multipart request:
an indexed ``file_{i}`` stream and ``metadata_{i}`` JSON blob per file.
Transient failures are retried with exponential backoff via tenacity;
everything else propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from mediaupload.models import BulkUploadFile, BulkUploadResponse, UploadConfig
from mediaupload.upload.exceptions import (
    AuthenticationError,
    PermanentError,
    RateLimitError,
    SubmissionError,
    TransientError,
    UploadValidationError,
)
from mediaupload.upload.schemas import BulkUploadResponseModel
from mediaupload.validation import AUDIO_RULES, MB

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504, 507, 509})

# Error texts the backend uses when it is briefly unable to accept work.
_TRANSIENT_SIGNALS: tuple[str, ...] = (
    "temporarily unavailable",
    "service unavailable",
    "try again",
    "timeout",
    "timed out",
    "network error",
    "connection reset",
    "connection refused",
    "econnreset",
)


def is_transient_message(message: str | None) -> bool:
    """Whether an error text carries a known backend-unavailable signal."""
    text = (message or "").lower()
    return any(signal in text for signal in _TRANSIENT_SIGNALS)


def classify_http_error(
    status_code: int,
    message: str,
    details: str | None = None,
) -> SubmissionError:
    """Map a non-success HTTP status onto the submission error taxonomy."""
    if status_code == 429:
        return RateLimitError(message, status_code=status_code, details=details)
    if status_code in (401, 403):
        return AuthenticationError(message, status_code=status_code, details=details)
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return TransientError(message, status_code=status_code, details=details)
    return PermanentError(message, status_code=status_code, details=details)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransientError)


def _error_from_response(response: httpx.Response) -> SubmissionError:
    fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
    details = None
    try:
        body = response.json()
    except ValueError:
        message = response.text.strip() or fallback
    else:
        if isinstance(body, dict):
            details = body.get("details")
            message = body.get("error") or details or fallback
        else:
            message = fallback
    return classify_http_error(response.status_code, str(message), details)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class BulkUploadTransport:
    """Submits one batch to the bulk upload endpoint with bounded retries.

    Usage::

        async with BulkUploadTransport(config) as transport:
            response = await transport.submit(files, auth_token)

    Args:
        config: Endpoint location, batch limit, and retry policy.
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
            backed by ``httpx.MockTransport``). A client passed in is not
            closed by the transport.
        sleep: Coroutine used between retry attempts.
        max_file_bytes: Per-file size ceiling enforced before sending.
    """

    def __init__(
        self,
        config: UploadConfig,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_file_bytes: int = AUDIO_RULES.max_bytes,
    ) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._max_file_bytes = max_file_bytes

    async def __aenter__(self) -> BulkUploadTransport:
        self._ensure_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.request_timeout_seconds)
        return self._client

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_batch(self, files: Sequence[BulkUploadFile]) -> None:
        """Reject a batch that must not reach the network.

        Raises:
            UploadValidationError: Listing every problem found.
        """
        if not files:
            raise UploadValidationError(["No files provided for upload"])

        errors: list[str] = []
        limit = self._config.max_batch_size
        if len(files) > limit:
            errors.append(f"Maximum {limit} files allowed per bulk upload")

        for index, item in enumerate(files, start=1):
            prefix = f"File {index}"
            meta = item.metadata
            if not meta.language_entity_id:
                errors.append(f"{prefix}: Language Entity ID is required")
            if not meta.audio_version_id:
                errors.append(f"{prefix}: Audio Version ID is required")
            if not meta.file_name:
                errors.append(f"{prefix}: File name is required")
            if not meta.chapter_id:
                errors.append(f"{prefix}: Chapter ID is required")
            if not meta.start_verse_id:
                errors.append(f"{prefix}: Start Verse ID is required")
            if not meta.end_verse_id:
                errors.append(f"{prefix}: End Verse ID is required")
            if not meta.duration_seconds or meta.duration_seconds <= 0:
                errors.append(f"{prefix}: Valid duration is required")
            if item.file.size > self._max_file_bytes:
                errors.append(
                    f"{prefix}: File size exceeds {self._max_file_bytes // MB}MB limit"
                )

        if errors:
            raise UploadValidationError(errors)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, files: Sequence[BulkUploadFile], auth_token: str) -> BulkUploadResponse:
        """Validate, send, and retry one batch.

        Args:
            files: Request entries from :class:`UploadRequestBuilder`.
            auth_token: Bearer token for the current session.

        Returns:
            The parsed response; its media records seed progress tracking.

        Raises:
            UploadValidationError: Before any network call.
            TransientError: After ``1 + max_retries`` failed attempts.
            PermanentError: On the first non-retryable failure.
        """
        files = list(files)
        self.validate_batch(files)

        cfg = self._config
        logger.info("Submitting bulk upload of %d files to %s", len(files), cfg.upload_url)

        response: BulkUploadResponse | None = None
        async for attempt in AsyncRetrying(
            sleep=self._sleep,
            wait=wait_exponential(
                multiplier=cfg.retry_initial_delay,
                exp_base=cfg.retry_multiplier,
                max=cfg.retry_max_delay,
            ),
            stop=stop_after_attempt(cfg.max_retries + 1),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                response = await self._send_once(files, auth_token)

        assert response is not None
        logger.info(
            "Bulk upload accepted: batch %s, %d media records",
            response.batch_id,
            len(response.media_records),
        )
        return response

    async def _send_once(self, files: list[BulkUploadFile], auth_token: str) -> BulkUploadResponse:
        client = self._ensure_client()
        headers = {"Authorization": f"Bearer {auth_token}"}
        if self._config.api_key:
            headers["apikey"] = self._config.api_key

        # Handles are reopened per attempt so a retry streams from the start.
        with contextlib.ExitStack() as stack:
            data: dict[str, str] = {}
            upload_files: dict[str, tuple[str, object, str]] = {}
            for index, item in enumerate(files):
                try:
                    handle = stack.enter_context(open(item.file.path, "rb"))
                except OSError as exc:
                    raise PermanentError(f"Could not read {item.file.name}: {exc}") from exc
                upload_files[f"file_{index}"] = (
                    item.file.name,
                    handle,
                    item.file.mime_type or "application/octet-stream",
                )
                data[f"metadata_{index}"] = json.dumps(item.metadata.to_wire())

            try:
                http_response = await client.post(
                    self._config.upload_url,
                    data=data,
                    files=upload_files,
                    headers=headers,
                )
            except httpx.TimeoutException as exc:
                raise TransientError(f"Upload request timed out: {exc}") from exc
            except httpx.TransportError as exc:
                raise TransientError(f"Network error during upload: {exc}") from exc

        if http_response.is_error:
            raise _error_from_response(http_response)

        try:
            payload = BulkUploadResponseModel.model_validate(http_response.json())
        except ValueError as exc:
            raise PermanentError(
                "Malformed bulk upload response", status_code=http_response.status_code
            ) from exc

        if not payload.success or payload.data is None:
            message = payload.error or "Bulk upload failed"
            error_cls = TransientError if is_transient_message(message) else PermanentError
            raise error_cls(message, status_code=http_response.status_code, details=payload.details)

        return payload.to_response()

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Bulk upload attempt %d failed (%s), retrying in %.1fs",
            retry_state.attempt_number,
            exc,
            delay,
        )
