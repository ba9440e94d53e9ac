"""Assemble bulk upload requests from staged files.

Ineligible files are dropped with their reasons rather than silently
filtered, so the caller can tell the user why a file was left out.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from mediaupload.models import BulkUploadFile, BulkUploadMetadata, SessionContext, UploadFile
from mediaupload.upload.exceptions import SessionContextError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DroppedFile:
    """A staged file that was left out of a request, and why."""

    file_id: str
    file_name: str
    reasons: tuple[str, ...]


@dataclass(frozen=True)
class BuildResult:
    files: tuple[BulkUploadFile, ...]
    dropped: tuple[DroppedFile, ...]


class UploadRequestBuilder:
    """Pairs eligible files with their per-file upload metadata."""

    def build(self, files: Iterable[UploadFile], session: SessionContext) -> BuildResult:
        """Build the request list for one batch.

        Args:
            files: Staged files, in display order.
            session: Language entity and audio version for the batch.

        Returns:
            BuildResult with the eligible files (input order preserved)
            and a record for every dropped file.

        Raises:
            SessionContextError: If the language entity or audio version
                selection is missing.
        """
        missing = []
        if not session.language_entity_id:
            missing.append("Language entity selection is required")
        if not session.audio_version_id:
            missing.append("Audio version selection is required")
        if missing:
            raise SessionContextError(missing)

        built: list[BulkUploadFile] = []
        dropped: list[DroppedFile] = []
        for file in files:
            reasons = self._ineligibility_reasons(file)
            if reasons:
                logger.warning("Dropping %s from upload: %s", file.name, "; ".join(reasons))
                dropped.append(DroppedFile(file.id, file.name, tuple(reasons)))
                continue
            built.append(BulkUploadFile(file=file, metadata=self._metadata_for(file, session)))

        logger.info("Built upload request: %d files, %d dropped", len(built), len(dropped))
        return BuildResult(files=tuple(built), dropped=tuple(dropped))

    @staticmethod
    def _ineligibility_reasons(file: UploadFile) -> list[str]:
        reasons = list(file.validation_errors)
        reasons.extend(f"Missing {name} selection" for name in file.missing_selections())
        return reasons

    @staticmethod
    def _metadata_for(file: UploadFile, session: SessionContext) -> BulkUploadMetadata:
        return BulkUploadMetadata(
            language_entity_id=session.language_entity_id or "",
            audio_version_id=session.audio_version_id or "",
            file_name=file.name,
            duration_seconds=file.duration or 0.0,
            chapter_id=file.selected_chapter_id or "",
            start_verse_id=file.selected_start_verse_id or "",
            end_verse_id=file.selected_end_verse_id or "",
        )
