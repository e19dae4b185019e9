"""In-memory duplicate detection across capture paths."""

from __future__ import annotations

import logging
from typing import Iterable

from .models import DedupSignature, Play

logger = logging.getLogger(__name__)


class DeduplicationIndex:
    """Signatures already stored plus everything accepted in this pass.

    The store's unique index is the backstop for anything that slips past,
    for example two passes racing on different sources.
    """

    def __init__(self, existing: Iterable[DedupSignature] = ()):
        self._seen: set[DedupSignature] = set(existing)

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, signature: object) -> bool:
        return signature in self._seen

    def is_duplicate(self, play: Play) -> bool:
        for signature in play.signatures:
            if signature in self._seen:
                logger.debug("Duplicate play %s", signature)
                return True
        return False

    def admit(self, play: Play) -> bool:
        """Record the play's signatures. False means it is a duplicate."""
        if self.is_duplicate(play):
            return False
        self._seen.update(play.signatures)
        return True
