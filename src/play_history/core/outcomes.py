"""Per-record parse outcomes, folded into a pass summary.

Readers and the import loop never raise for a single bad record. Each record
yields a RecordOutcome and the pass folds them into its ImportSummary.
"""

from __future__ import annotations

from enum import Enum
from typing import Generic, Iterable, Optional, TypeVar

from pydantic import BaseModel

from .models import ImportSummary

T = TypeVar("T")


class OutcomeKind(str, Enum):
    ACCEPTED = "accepted"
    FILTERED = "filtered"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class RecordOutcome(BaseModel, Generic[T]):
    """The result of handling one raw record."""

    kind: OutcomeKind
    value: Optional[T] = None
    reason: str = ""

    @classmethod
    def accepted(cls, value: T) -> "RecordOutcome[T]":
        return cls(kind=OutcomeKind.ACCEPTED, value=value)

    @classmethod
    def filtered(cls, reason: str) -> "RecordOutcome[T]":
        return cls(kind=OutcomeKind.FILTERED, reason=reason)

    @classmethod
    def duplicate(cls) -> "RecordOutcome[T]":
        return cls(kind=OutcomeKind.DUPLICATE, reason="duplicate")

    @classmethod
    def failed(cls, reason: str) -> "RecordOutcome[T]":
        return cls(kind=OutcomeKind.FAILED, reason=reason)


def fold_outcomes(summary: ImportSummary, outcomes: Iterable[RecordOutcome]) -> ImportSummary:
    """Add the outcomes' counts to the summary.

    Duplicates and failures both count as skipped. Filtered records only
    show up in ``filtered``.
    """
    for outcome in outcomes:
        if outcome.kind is OutcomeKind.ACCEPTED:
            summary.added += 1
        elif outcome.kind is OutcomeKind.FILTERED:
            summary.filtered += 1
        else:
            summary.skipped += 1
    return summary
