"""Tests for config loading and keyring-backed sessions."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from mediaupload.config import (
    ACCESS_TOKEN_ENV,
    KeyringSessionProvider,
    SessionProvider,
    load_upload_config,
)
from mediaupload.upload.exceptions import SessionUnavailableError


class TestLoadUploadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        with patch("mediaupload.config.keyring.get_password", return_value="from-keyring"):
            config = load_upload_config(tmp_path / "absent.json")
        assert config.max_batch_size == 80
        assert config.poll_interval_seconds == 2.0
        assert config.max_tracking_seconds == 600
        assert config.api_key == "from-keyring"

    def test_file_values_override_defaults(self, tmp_path):
        path = tmp_path / "upload_config.json"
        path.write_text(json.dumps({
            "base_url": "https://project.example.test/",
            "api_key": "file-key",
            "max_retries": 5,
            "not_a_setting": True,
        }))

        with patch("mediaupload.config.keyring.get_password") as get_password:
            config = load_upload_config(path)

        get_password.assert_not_called()
        assert config.api_key == "file-key"
        assert config.max_retries == 5
        assert config.upload_url == "https://project.example.test/functions/v1/upload-bible-chapter-audio-bulk"
        assert config.progress_url == "https://project.example.test/functions/v1/get-upload-progress"


class TestKeyringSessionProvider:
    def test_implements_protocol(self):
        assert isinstance(KeyringSessionProvider(), SessionProvider)

    async def test_keyring_token(self):
        values = {"access_token": "kr-token", "user_id": "user-9"}
        with patch("mediaupload.config.keyring.get_password", side_effect=lambda s, k: values.get(k)):
            session = await KeyringSessionProvider().get_session()
        assert session.access_token == "kr-token"
        assert session.user_id == "user-9"

    async def test_environment_fallback(self, monkeypatch):
        monkeypatch.setenv(ACCESS_TOKEN_ENV, "env-token")
        with patch("mediaupload.config.keyring.get_password", return_value=None):
            session = await KeyringSessionProvider().get_session()
        assert session.access_token == "env-token"
        assert session.user_id is None

    async def test_no_token_raises_with_instructions(self, monkeypatch):
        monkeypatch.delenv(ACCESS_TOKEN_ENV, raising=False)
        with patch("mediaupload.config.keyring.get_password", return_value=None):
            with pytest.raises(SessionUnavailableError, match="keyring set mediaupload access_token"):
                await KeyringSessionProvider().get_session()
