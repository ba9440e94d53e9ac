"""Filename metadata resolution seam.

Parsing book/chapter/verse hints out of filenames is owned by the host
application. The pipeline only needs the :class:`ParsedFilename` result and
its confidence, which decides whether manual selection is required.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from mediaupload.models import Confidence, ParsedFilename


@runtime_checkable
class FilenameMetadataResolver(Protocol):
    """Turns a filename into book/chapter/verse hints."""

    def resolve(self, filename: str) -> ParsedFilename:
        ...


class UnresolvedFilenameResolver:
    """Resolver used when the host supplies none: every file needs manual selection."""

    def resolve(self, filename: str) -> ParsedFilename:
        return ParsedFilename(original_filename=filename, confidence=Confidence.NONE)
