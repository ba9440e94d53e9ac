"""Configuration loading and session credentials for the upload pipeline."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

import keyring

from mediaupload.models import AuthSession, UploadConfig
from mediaupload.upload.exceptions import SessionUnavailableError

SERVICE_NAME = "mediaupload"
API_KEY_NAME = "anon_key"
ACCESS_TOKEN_NAME = "access_token"
USER_ID_NAME = "user_id"
ACCESS_TOKEN_ENV = "MEDIAUPLOAD_ACCESS_TOKEN"


def load_upload_config(config_path: Path | None = None) -> UploadConfig:
    """Load upload pipeline configuration from JSON, falling back to defaults.

    Reads from ``config/upload_config.json`` when *config_path* is ``None``.
    If the file does not exist, returns an ``UploadConfig`` with defaults.
    Unrecognised keys are ignored. When the file carries no ``api_key``,
    the anon key is read from the system keyring
    (service: ``mediaupload``, key: ``anon_key``).

    Args:
        config_path: Optional explicit path to upload_config.json.

    Returns:
        UploadConfig populated from file + keyring.
    """
    if config_path is None:
        config_path = Path("config/upload_config.json")

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    field_names = {f.name for f in UploadConfig.__dataclass_fields__.values()}
    kwargs = {k: v for k, v in data.items() if k in field_names}

    config = UploadConfig(**kwargs)
    if config.api_key is None:
        config.api_key = keyring.get_password(SERVICE_NAME, API_KEY_NAME)
    return config


@runtime_checkable
class SessionProvider(Protocol):
    """Supplies the bearer token for backend calls."""

    async def get_session(self) -> AuthSession:
        ...


class KeyringSessionProvider:
    """Reads the access token from the keyring, then the environment.

    Raises :class:`SessionUnavailableError` with setup instructions when
    neither holds a token.
    """

    def __init__(self, service_name: str = SERVICE_NAME, env_var: str = ACCESS_TOKEN_ENV) -> None:
        self._service_name = service_name
        self._env_var = env_var

    async def get_session(self) -> AuthSession:
        token = keyring.get_password(self._service_name, ACCESS_TOKEN_NAME)
        if not token:
            token = os.environ.get(self._env_var)
        if not token:
            raise SessionUnavailableError(
                "No access token found.\n"
                f"Store one with: keyring set {self._service_name} {ACCESS_TOKEN_NAME}\n"
                f"Or: export {self._env_var}=your-token"
            )
        user_id = keyring.get_password(self._service_name, USER_ID_NAME)
        return AuthSession(access_token=token, user_id=user_id)
