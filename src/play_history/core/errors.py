"""Error taxonomy for import passes.

Pass-level errors (SourceNotFound, StructuralDecodeError) abort a pass and are
reported in its summary. Record-level errors (PerRecordDecodeError) and an
unavailable performance collaborator are recovered inside the pass.
"""

from __future__ import annotations


class PlayHistoryError(Exception):
    """Base class for every error raised by the import core."""


class SourceNotFound(PlayHistoryError):
    """A ledger, catalog or store path is missing or unreadable."""

    def __init__(self, path: str, detail: str = ""):
        self.path = path
        message = f"Source not found: {path}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class StructuralDecodeError(PlayHistoryError):
    """A sequential binary stream lost synchronization.

    Every field after the failure point would be misread, so the remaining
    records of the source are abandoned.
    """

    def __init__(self, source: str, offset: int | None, detail: str):
        self.source = source
        self.offset = offset
        where = f" at byte {offset}" if offset is not None else ""
        super().__init__(f"{source} is corrupt{where}: {detail}")


class PerRecordDecodeError(PlayHistoryError):
    """A single record could not be decoded; the rest of the source is fine."""

    def __init__(self, record: str, detail: str):
        self.record = record
        super().__init__(f"Could not decode {record}: {detail}")


class CollaboratorUnavailable(PlayHistoryError):
    """The performance-calculation collaborator cannot serve a request."""
