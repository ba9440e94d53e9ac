"""Client-side file validation.

Every check runs independently and all failures are reported together, so
a user fixing a batch sees the full list of problems at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePath

from mediaupload.models import UploadFile

MB = 1024 * 1024


@dataclass(frozen=True)
class ValidationRules:
    """Limits and accepted types for one kind of media."""

    max_bytes: int
    mime_types: frozenset[str]
    extensions: frozenset[str]
    type_label: str
    requires_duration: bool = False


AUDIO_RULES = ValidationRules(
    max_bytes=500 * MB,
    mime_types=frozenset({
        "audio/mp3",
        "audio/mpeg",
        "audio/wav",
        "audio/wave",
        "audio/x-wav",
        "audio/m4a",
        "audio/x-m4a",
        "audio/mp4",
        "audio/aac",
        "audio/ogg",
        "audio/webm",
    }),
    extensions=frozenset({".mp3", ".wav", ".m4a", ".aac", ".ogg", ".webm"}),
    type_label="MP3, WAV, M4A, AAC, OGG, or WebM",
    requires_duration=True,
)

IMAGE_RULES = ValidationRules(
    max_bytes=50 * MB,
    mime_types=frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"}),
    extensions=frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"}),
    type_label="JPG, PNG, GIF, or WebP",
)

DURATION_ERROR = "Could not determine audio duration - file may be corrupted"


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors


class FileValidator:
    """Checks a file's size, type, and (for audio) duration against rules."""

    def __init__(self, rules: ValidationRules = AUDIO_RULES) -> None:
        self.rules = rules

    def validate(
        self,
        name: str,
        size: int,
        mime_type: str | None,
        duration: float | None = None,
        duration_requested: bool = False,
    ) -> ValidationResult:
        """Validate one file's attributes.

        Args:
            name: Filename, used for the extension check.
            size: Size in bytes.
            mime_type: Declared MIME type (may be empty).
            duration: Probed duration in seconds, if any.
            duration_requested: Whether a duration probe was run. The
                duration check only applies when it was.

        Returns:
            ValidationResult listing every failed check.
        """
        rules = self.rules
        errors: list[str] = []

        if size > rules.max_bytes:
            errors.append(f"File size exceeds {rules.max_bytes // MB}MB limit")
        if size == 0:
            errors.append("File appears to be empty")

        mime_ok = (mime_type or "").lower() in rules.mime_types
        ext_ok = PurePath(name).suffix.lower() in rules.extensions
        if not mime_ok and not ext_ok:
            errors.append(f"Unsupported file type. Please use {rules.type_label} files")

        if rules.requires_duration and duration_requested:
            if duration is None or duration <= 0:
                errors.append(DURATION_ERROR)

        return ValidationResult(errors=tuple(errors))

    def validate_file(self, file: UploadFile, duration_requested: bool = False) -> ValidationResult:
        return self.validate(
            file.name,
            file.size,
            file.mime_type,
            duration=file.duration,
            duration_requested=duration_requested,
        )
