"""Progress sources: where status observations for a batch come from.

A :class:`ProgressSource` feeds :class:`FileStatusUpdate` lists to a
callback until its handle is stopped. Two interchangeable implementations
are provided:

* :class:`PollingProgressSource` -- POSTs the tracked ids to the progress
  edge function on a fixed interval.
* :class:`RealtimeProgressSource` -- consumes row-update events from an
  injected change feed.

Sources never decide convergence; they only deliver observations and
report reconciliation failures.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from mediaupload.models import FileStatusUpdate, UploadConfig
from mediaupload.upload.exceptions import ProgressCheckError
from mediaupload.upload.schemas import MediaFileRowModel, ProgressResponseModel

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[list[FileStatusUpdate]], None]
ErrorCallback = Callable[[BaseException], None]


@dataclass
class TrackingHandle:
    """Handle for one active tracking session."""

    ids: tuple[str, ...]
    task: asyncio.Task | None = None
    stopped: bool = False
    ticks: int = 0

    async def wait_closed(self) -> None:
        """Wait until the background task has finished."""
        if self.task is not None:
            await asyncio.gather(self.task, return_exceptions=True)


@runtime_checkable
class ProgressSource(Protocol):
    """Delivers status observations for a set of media file ids."""

    def start_tracking(
        self,
        ids: Sequence[str],
        auth_token: str,
        on_update: UpdateCallback,
        on_error: ErrorCallback,
    ) -> TrackingHandle:
        ...

    def stop(self, handle: TrackingHandle) -> None:
        ...


def _stop_handle(handle: TrackingHandle) -> None:
    if handle.stopped:
        return
    handle.stopped = True
    task = handle.task
    # A callback running inside the task may stop its own handle; the loop
    # exits on the flag instead of being cancelled mid-step.
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


class PollingProgressSource:
    """Polls the progress endpoint until stopped.

    The first check runs immediately, then one every
    ``config.poll_interval_seconds``. Checks run strictly one after
    another, so two reconciliations for a batch never overlap.

    Args:
        config: Provides ``progress_url``, ``api_key`` and the interval.
        client: Optional ``httpx.AsyncClient``; not closed by the source.
        sleep: Coroutine used between checks.
    """

    def __init__(
        self,
        config: UploadConfig,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.request_timeout_seconds)
        return self._client

    def start_tracking(
        self,
        ids: Sequence[str],
        auth_token: str,
        on_update: UpdateCallback,
        on_error: ErrorCallback,
    ) -> TrackingHandle:
        handle = TrackingHandle(ids=tuple(ids))
        handle.task = asyncio.get_running_loop().create_task(
            self._poll(handle, auth_token, on_update, on_error),
            name=f"progress-poll-{len(handle.ids)}",
        )
        logger.info("Polling progress for %d media files", len(handle.ids))
        return handle

    def stop(self, handle: TrackingHandle) -> None:
        _stop_handle(handle)

    async def _poll(
        self,
        handle: TrackingHandle,
        auth_token: str,
        on_update: UpdateCallback,
        on_error: ErrorCallback,
    ) -> None:
        while not handle.stopped:
            handle.ticks += 1
            try:
                updates = await self.fetch_progress(handle.ids, auth_token)
            except Exception as exc:
                if handle.stopped:
                    return
                logger.warning("Progress check failed: %s", exc)
                on_error(exc)
            else:
                if handle.stopped:
                    logger.debug("Discarding progress response for stopped tracking")
                    return
                on_update(updates)

            if handle.stopped:
                return
            await self._sleep(self._config.poll_interval_seconds)

    async def fetch_progress(self, ids: Sequence[str], auth_token: str) -> list[FileStatusUpdate]:
        """Run one reconciliation fetch.

        Raises:
            httpx.HTTPError: On network failure.
            ProgressCheckError: On an error status or error payload.
            ValueError: On an unparseable body.
        """
        client = self._ensure_client()
        headers = {"Authorization": f"Bearer {auth_token}"}
        if self._config.api_key:
            headers["apikey"] = self._config.api_key

        response = await client.post(
            self._config.progress_url,
            json={"mediaFileIds": list(ids)},
            headers=headers,
        )
        if response.is_error:
            raise ProgressCheckError(
                f"Progress check failed: HTTP {response.status_code} {response.reason_phrase}"
            )

        payload = ProgressResponseModel.model_validate(response.json())
        if not payload.success or payload.data is None:
            raise ProgressCheckError(payload.error or "Progress check returned no data")
        return payload.to_updates()


# ---------------------------------------------------------------------------
# Realtime change feed
# ---------------------------------------------------------------------------


@runtime_checkable
class ChangeFeed(Protocol):
    """Row-update stream for ``media_files`` filtered to a set of ids."""

    def subscribe(self, ids: Sequence[str]) -> AsyncIterator[dict[str, Any]]:
        ...


class RealtimeProgressSource:
    """Feeds row-update events from a :class:`ChangeFeed` to the tracker.

    A failed or closed subscription is reported through ``on_error`` and
    re-opened after ``config.realtime_reconnect_seconds``, until the handle
    stops.

    Args:
        feed: Row-update stream to subscribe to.
        config: Provides the reconnect delay.
        sleep: Coroutine used before resubscribing.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        config: UploadConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._feed = feed
        self._reconnect_delay = config.realtime_reconnect_seconds
        self._sleep = sleep

    def start_tracking(
        self,
        ids: Sequence[str],
        auth_token: str,
        on_update: UpdateCallback,
        on_error: ErrorCallback,
    ) -> TrackingHandle:
        handle = TrackingHandle(ids=tuple(ids))
        handle.task = asyncio.get_running_loop().create_task(
            self._listen(handle, on_update, on_error),
            name=f"progress-feed-{len(handle.ids)}",
        )
        logger.info("Subscribed to changes for %d media files", len(handle.ids))
        return handle

    def stop(self, handle: TrackingHandle) -> None:
        _stop_handle(handle)

    async def _listen(
        self,
        handle: TrackingHandle,
        on_update: UpdateCallback,
        on_error: ErrorCallback,
    ) -> None:
        wanted = set(handle.ids)
        while not handle.stopped:
            handle.ticks += 1
            try:
                async for row in self._feed.subscribe(handle.ids):
                    if handle.stopped:
                        return
                    try:
                        update = MediaFileRowModel.model_validate(row).to_update()
                    except ValidationError as exc:
                        logger.warning("Ignoring malformed change row: %s", exc)
                        continue
                    if update.media_file_id in wanted:
                        on_update([update])
                    if handle.stopped:
                        return
                if handle.stopped:
                    return
                on_error(ProgressCheckError("Change feed closed"))
            except Exception as exc:
                if handle.stopped:
                    return
                logger.warning("Change feed failed: %s", exc)
                on_error(exc)

            if handle.stopped:
                return
            await self._sleep(self._reconnect_delay)
