"""Tests for RestMediaRecordStore against a mocked PostgREST endpoint."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from mediaupload.models import UploadStatus
from mediaupload.upload.exceptions import ProgressCheckError
from mediaupload.upload.resume import MediaRecordStore, RestMediaRecordStore

SINCE = datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc)


def _store(config, handler) -> RestMediaRecordStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RestMediaRecordStore(config, client=client)


class TestRestMediaRecordStore:
    """Query shape and row parsing."""

    def test_implements_protocol(self, upload_config):
        assert isinstance(RestMediaRecordStore(upload_config), MediaRecordStore)

    async def test_query_parameters_and_headers(self, upload_config):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        store = _store(upload_config, handler)
        assert await store.find_in_flight(SINCE, "token", project_id="proj-1") == []

        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/media_files"
        params = request.url.params
        assert params["upload_status"] == "in.(pending,uploading)"
        assert params["created_at"] == "gte.2026-10-17T10:00:00+00:00"
        assert params["order"] == "created_at.desc"
        assert params["project_id"] == "eq.proj-1"
        assert request.headers["Authorization"] == "Bearer token"
        assert request.headers["apikey"] == "anon-key"

    async def test_project_filter_is_optional(self, upload_config):
        seen = []
        store = _store(upload_config, lambda r: seen.append(r) or httpx.Response(200, json=[]))
        await store.find_in_flight(SINCE, "token")
        assert "project_id" not in seen[0].url.params

    async def test_naive_cutoff_is_treated_as_utc(self, upload_config):
        seen = []
        store = _store(upload_config, lambda r: seen.append(r) or httpx.Response(200, json=[]))
        await store.find_in_flight(datetime(2026, 10, 17, 10, 0), "token")
        assert seen[0].url.params["created_at"] == "gte.2026-10-17T10:00:00+00:00"

    async def test_rows_become_resumable_records(self, upload_config):
        rows = [
            {
                "id": "m1",
                "upload_status": "uploading",
                "created_at": "2026-10-17T11:50:00+00:00",
                "local_path": "uploads/proj-1/GEN_001.mp3",
            },
            {"id": "m2", "upload_status": "processing", "created_at": None},
        ]
        store = _store(upload_config, lambda r: httpx.Response(200, json=rows))

        records = await store.find_in_flight(SINCE, "token")

        assert [r.id for r in records] == ["m1", "m2"]
        assert records[0].file_name == "GEN_001.mp3"
        assert records[0].status == UploadStatus.UPLOADING
        assert records[0].created_at == datetime(2026, 10, 17, 11, 50, tzinfo=timezone.utc)
        assert records[1].file_name == "m2"
        assert records[1].status == UploadStatus.UNKNOWN
        assert records[0].to_media_record().status == UploadStatus.UPLOADING

    async def test_error_status_raises(self, upload_config):
        store = _store(upload_config, lambda r: httpx.Response(401))
        with pytest.raises(ProgressCheckError, match="Media file lookup failed: HTTP 401"):
            await store.find_in_flight(SINCE, "token")
