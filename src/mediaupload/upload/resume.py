"""Look up uploads that were in flight before a restart.

The orchestrator re-attaches tracking to media files that are still
``pending`` or ``uploading`` and were created recently. The lookup goes
through :class:`MediaRecordStore` so the query mechanism stays swappable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import httpx
from pydantic import TypeAdapter

from mediaupload.models import MediaRecord, UploadConfig, UploadStatus
from mediaupload.upload.exceptions import ProgressCheckError
from mediaupload.upload.schemas import MediaFileRowModel

logger = logging.getLogger(__name__)

_ROWS = TypeAdapter(list[MediaFileRowModel])


@dataclass(frozen=True)
class ResumableRecord:
    """A media file that may still be uploading server-side."""

    id: str
    file_name: str
    status: UploadStatus
    created_at: datetime | None

    def to_media_record(self) -> MediaRecord:
        return MediaRecord(id=self.id, file_name=self.file_name, status=self.status)


@runtime_checkable
class MediaRecordStore(Protocol):
    """Query for non-terminal media files created since a cutoff."""

    async def find_in_flight(
        self,
        since: datetime,
        auth_token: str,
        project_id: str | None = None,
    ) -> list[ResumableRecord]:
        ...


class RestMediaRecordStore:
    """Reads ``media_files`` through the PostgREST endpoint.

    Args:
        config: Provides ``records_url`` and the anon ``api_key``.
        client: Optional ``httpx.AsyncClient``; not closed by the store.
    """

    def __init__(self, config: UploadConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def find_in_flight(
        self,
        since: datetime,
        auth_token: str,
        project_id: str | None = None,
    ) -> list[ResumableRecord]:
        """Fetch pending/uploading rows created at or after *since*.

        Raises:
            httpx.HTTPError: On network failure.
            ProgressCheckError: On an error response.
        """
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.request_timeout_seconds)

        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        params = {
            "select": "id,upload_status,created_at,local_path,remote_path,project_id",
            "upload_status": "in.(pending,uploading)",
            "created_at": f"gte.{since.isoformat()}",
            "order": "created_at.desc",
        }
        if project_id:
            params["project_id"] = f"eq.{project_id}"

        headers = {"Authorization": f"Bearer {auth_token}"}
        if self._config.api_key:
            headers["apikey"] = self._config.api_key

        response = await self._client.get(self._config.records_url, params=params, headers=headers)
        if response.is_error:
            raise ProgressCheckError(
                f"Media file lookup failed: HTTP {response.status_code} {response.reason_phrase}"
            )

        rows = _ROWS.validate_python(response.json())
        logger.debug("Found %d in-flight media files since %s", len(rows), since.isoformat())
        return [
            ResumableRecord(
                id=row.id,
                file_name=row.file_name,
                status=row.upload_status,
                created_at=row.created_at,
            )
            for row in rows
        ]
