"""Stage local files into :class:`UploadFile` records.

Staging gathers everything the request builder needs from a local path:
size, MIME type, an optional duration probe, filename hints, and
validation errors. Staging never raises for an individual unreadable
file; it produces an invalid record instead so the caller can show it.
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from mediaupload.filenames import FilenameMetadataResolver, UnresolvedFilenameResolver
from mediaupload.models import Confidence, UploadFile
from mediaupload.validation import FileValidator

logger = logging.getLogger(__name__)

MANUAL_SELECTION_ERROR = "Could not auto-detect book/chapter from filename - manual selection required"

DurationProbe = Callable[[Path], "float | None"]

_UNSET = object()


@dataclass
class StagingStats:
    """Aggregate view of a staged file list."""

    total: int = 0
    valid: int = 0
    invalid: int = 0
    total_size: int = 0
    total_duration: float = 0.0
    by_confidence: dict[str, int] = field(default_factory=dict)


class FileStager:
    """Builds validated :class:`UploadFile` records from local paths.

    Args:
        resolver: Filename hint resolver; defaults to one that always asks
            for manual selection.
        validator: Validator to apply; defaults to audio rules.
        duration_probe: Optional callable returning a file's duration in
            seconds. When omitted, no duration check is performed.
    """

    def __init__(
        self,
        resolver: FilenameMetadataResolver | None = None,
        validator: FileValidator | None = None,
        duration_probe: DurationProbe | None = None,
    ) -> None:
        self._resolver = resolver or UnresolvedFilenameResolver()
        self._validator = validator or FileValidator()
        self._duration_probe = duration_probe

    def stage(self, path: Path | str) -> UploadFile:
        """Stage a single file.

        Raises:
            OSError: If the file cannot be read.
        """
        path = Path(path)
        size = path.stat().st_size
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

        duration = None
        if self._duration_probe is not None:
            try:
                duration = self._duration_probe(path)
            except (OSError, ValueError) as exc:
                logger.warning("Duration probe failed for %s: %s", path.name, exc)

        parsed = self._resolver.resolve(path.name)
        result = self._validator.validate(
            path.name,
            size,
            mime_type,
            duration=duration,
            duration_requested=self._duration_probe is not None,
        )
        errors = list(result.errors)
        if parsed.confidence == Confidence.NONE:
            errors.append(MANUAL_SELECTION_ERROR)

        staged = UploadFile(
            id=uuid.uuid4().hex,
            path=path,
            name=path.name,
            size=size,
            mime_type=mime_type,
            duration=duration,
            parsed=parsed,
            validation_errors=errors,
        )
        logger.debug(
            "Staged %s (%d bytes, confidence=%s, %d errors)",
            staged.name,
            size,
            parsed.confidence.value,
            len(errors),
        )
        return staged

    def stage_many(self, paths: Iterable[Path | str]) -> list[UploadFile]:
        """Stage every path, turning per-file failures into error records."""
        staged: list[UploadFile] = []
        for raw in paths:
            path = Path(raw)
            try:
                staged.append(self.stage(path))
            except OSError as exc:
                logger.warning("Could not stage %s: %s", path, exc)
                staged.append(
                    UploadFile(
                        id=uuid.uuid4().hex,
                        path=path,
                        name=path.name,
                        size=0,
                        mime_type="",
                        validation_errors=[f"Processing failed: {exc}"],
                    )
                )
        return staged


def update_selection(
    file: UploadFile,
    *,
    book_id: str | None | object = _UNSET,
    chapter_id: str | None | object = _UNSET,
    start_verse_id: str | None | object = _UNSET,
    end_verse_id: str | None | object = _UNSET,
) -> UploadFile:
    """Apply manual selections to a staged file and re-check it.

    Only the given selections change. Once all four are present the
    manual-selection error is dropped; clearing one brings it back for
    files whose filename could not be resolved.
    """
    if book_id is not _UNSET:
        file.selected_book_id = book_id  # type: ignore[assignment]
    if chapter_id is not _UNSET:
        file.selected_chapter_id = chapter_id  # type: ignore[assignment]
    if start_verse_id is not _UNSET:
        file.selected_start_verse_id = start_verse_id  # type: ignore[assignment]
    if end_verse_id is not _UNSET:
        file.selected_end_verse_id = end_verse_id  # type: ignore[assignment]

    unresolved = file.parsed is None or file.parsed.confidence == Confidence.NONE
    if file.has_all_selections:
        file.validation_errors = [e for e in file.validation_errors if e != MANUAL_SELECTION_ERROR]
    elif unresolved and MANUAL_SELECTION_ERROR not in file.validation_errors:
        file.validation_errors.append(MANUAL_SELECTION_ERROR)
    return file


def staging_stats(files: Iterable[UploadFile]) -> StagingStats:
    stats = StagingStats()
    for f in files:
        stats.total += 1
        if f.is_valid:
            stats.valid += 1
        else:
            stats.invalid += 1
        stats.total_size += f.size
        stats.total_duration += f.duration or 0.0
        confidence = f.parsed.confidence.value if f.parsed else Confidence.NONE.value
        stats.by_confidence[confidence] = stats.by_confidence.get(confidence, 0) + 1
    return stats
