"""Import pass coordination.

Passes on the same source run one at a time; stable and dynamic passes may
overlap each other and live capture. The coordinator never schedules
anything itself, the host decides when a pass runs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import ImportConfig
from .core.models import ImportSummary, Play
from .core.performance import PerformanceAnnotator
from .core.replay import ReplayHitAnalyzer
from .core.sources.dynamic_store import StoreEngine
from .ingestors import DYNAMIC_SOURCE, STABLE_SOURCE, record_live_play, run_dynamic_import, run_stable_import
from .store import Store

logger = logging.getLogger(__name__)


class ImportCoordinator:
    """Serializes import passes per source and waits for them on stop."""

    def __init__(
        self,
        config: ImportConfig,
        store: Store,
        engine: Optional[StoreEngine] = None,
        annotator: Optional[PerformanceAnnotator] = None,
        analyzer: Optional[ReplayHitAnalyzer] = None,
    ):
        self.config = config
        self.store = store
        self.engine = engine
        self.annotator = annotator
        self.analyzer = analyzer
        self._locks = {STABLE_SOURCE: asyncio.Lock(), DYNAMIC_SOURCE: asyncio.Lock()}
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def busy(self, source: str) -> bool:
        return self._locks[source].locked()

    async def import_stable(self) -> ImportSummary:
        async with self._locks[STABLE_SOURCE]:
            if self._stopped:
                return ImportSummary(source=STABLE_SOURCE, error="Coordinator is stopped")
            return await run_stable_import(self.config, self.store, self.annotator, self.analyzer)

    async def import_dynamic(self) -> ImportSummary:
        async with self._locks[DYNAMIC_SOURCE]:
            if self._stopped:
                return ImportSummary(source=DYNAMIC_SOURCE, error="Coordinator is stopped")
            if self.engine is None:
                return ImportSummary(source=DYNAMIC_SOURCE, error="No store engine available")
            return await run_dynamic_import(
                self.config, self.store, self.engine, self.annotator, self.analyzer
            )

    async def record_live(self, play: Play) -> Optional[int]:
        """Live capture bypasses the pass locks; the store's unique index arbitrates."""
        return await record_live_play(self.store, play)

    async def stop(self):
        """Refuse new passes and wait for in-flight ones to finish."""
        self._stopped = True
        for source, lock in self._locks.items():
            if lock.locked():
                logger.info("Waiting for %s import to finish", source)
            async with lock:
                pass
        logger.info("Import coordinator stopped")

