"""Placeholder rows shown before the backend confirms an upload.

These entries belong to the presentation layer's cache, keyed by project.
They are never merged into the orchestrator's progress map, which only
reflects server-confirmed media records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from mediaupload.models import UploadFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimisticEntry:
    """A not-yet-confirmed row for one file being uploaded."""

    file_name: str
    book_name: str | None = None
    chapter_number: int | None = None
    start_verse_number: int | None = None
    end_verse_number: int | None = None
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def entries_from_files(files: Iterable[UploadFile]) -> list[OptimisticEntry]:
    """Build placeholder rows from the filename hints of staged files."""
    entries = []
    for f in files:
        parsed = f.parsed
        entries.append(
            OptimisticEntry(
                file_name=f.name,
                book_name=parsed.book if parsed else None,
                chapter_number=parsed.chapter if parsed else None,
                start_verse_number=parsed.start_verse if parsed else None,
                end_verse_number=parsed.end_verse if parsed else None,
            )
        )
    return entries


class OptimisticEntryCache:
    """Per-project store of placeholder rows."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, OptimisticEntry]] = {}

    def add_optimistic_entries(self, project_id: str, entries: Iterable[OptimisticEntry]) -> None:
        bucket = self._entries.setdefault(project_id, {})
        for entry in entries:
            bucket[entry.file_name] = entry
        logger.debug("Project %s has %d optimistic entries", project_id, len(bucket))

    def remove_optimistic_entries(
        self,
        project_id: str,
        file_names: Iterable[str] | None = None,
    ) -> None:
        """Drop some (or, with no names, all) placeholder rows of a project."""
        if file_names is None:
            self._entries.pop(project_id, None)
            return
        bucket = self._entries.get(project_id)
        if bucket is None:
            return
        for name in file_names:
            bucket.pop(name, None)
        if not bucket:
            del self._entries[project_id]

    def entries(self, project_id: str) -> list[OptimisticEntry]:
        return list(self._entries.get(project_id, {}).values())
