"""Import passes, live capture and on-demand replay analysis.

A pass decodes its whole source first (in a worker thread), builds the
canonical records, and only then writes them in one transaction, so it
either completes or leaves the store untouched. Pass-level failures come
back in the ImportSummary; they are never raised to the caller.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
from typing import Optional

from .config import ImportConfig
from .core.beatmap_file import BeatmapFile, parse_beatmap_file
from .core.dedup import DeduplicationIndex
from .core.errors import PlayHistoryError, SourceNotFound
from .core.models import Beatmap, HitAnalysis, ImportSummary, Play
from .core.mods import mods_to_bitmask
from .core.normalizer import beatmap_from_dynamic, normalize_dynamic, normalize_stable
from .core.outcomes import RecordOutcome, fold_outcomes
from .core.performance import PerformanceAnnotator
from .core.replay import ReplayHitAnalyzer
from .core.scoring import check_legacy_score, clock_rate
from .core.sources.adapters import blob_path
from .core.sources.catalog import Catalog, load_catalog
from .core.sources.dynamic_store import DynamicStoreContents, DynamicStoreReader, StoreEngine
from .core.sources.ledger import LedgerContents, link_replay, read_ledger
from .store import Store

logger = logging.getLogger(__name__)

STABLE_SOURCE = "stable"
DYNAMIC_SOURCE = "dynamic"


class _Enricher:
    """Per-pass helpers for the blocking enrichment work.

    Parsed beatmaps and maximum attributes are cached for the pass, so
    many plays on one map only parse it once.
    """

    def __init__(
        self,
        annotator: PerformanceAnnotator,
        analyzer: ReplayHitAnalyzer,
        analyze_replays: bool,
    ):
        self.annotator = annotator
        self.analyzer = analyzer
        self.analyze_replays = analyze_replays
        self._parsed: dict[str, Optional[BeatmapFile]] = {}

    def parsed(self, path: Optional[str]) -> Optional[BeatmapFile]:
        if not path:
            return None
        if path not in self._parsed:
            try:
                self._parsed[path] = parse_beatmap_file(path) if Path(path).is_file() else None
            except (OSError, PlayHistoryError) as exc:
                logger.warning("Could not parse beatmap %s: %s", path, exc)
                self._parsed[path] = None
        return self._parsed[path]

    def complete_beatmap(self, beatmap: Beatmap, path: Optional[str]) -> Beatmap:
        """Fill counts, BPM, max combo and stars from the beatmap file."""
        parsed = self.parsed(path)
        if parsed is None:
            return beatmap
        update: dict = {}
        if beatmap.total_objects == 0:
            update.update(circles=parsed.circles, sliders=parsed.sliders, spinners=parsed.spinners)
        maximum = self.annotator.beatmap_maximum(path)
        if maximum.max_combo > 0:
            update["max_combo"] = maximum.max_combo
        if beatmap.stars <= 0 and maximum.stars > 0:
            update["stars"] = maximum.stars
        if beatmap.bpm <= 0:
            update["bpm"] = maximum.bpm or parsed.bpm
        return beatmap.model_copy(update=update) if update else beatmap

    def attach_analysis(self, play: Play, replay_path: str) -> Play:
        if not self.analyze_replays or not replay_path or not play.map_path:
            return play
        if not Path(play.map_path).is_file() or not Path(replay_path).is_file():
            return play
        analysis = self.analyzer.analyze(play.map_path, replay_path)
        update: dict = {"key_ratio": analysis.key_ratio}
        if analysis.unstable_rate > 0:
            update["unstable_rate"] = analysis.unstable_rate
        if analysis.hit_errors:
            update["hit_offsets"] = analysis.hit_errors
        return play.model_copy(update=update)


def _stable_background(stable_root: Path, folder: str, parsed: Optional[BeatmapFile]) -> Optional[str]:
    if parsed is None or not parsed.background:
        return None
    path = stable_root / "Songs" / folder / parsed.background
    if not path.is_file():
        return None
    return "STABLE:" + base64.b64encode(str(path).encode("utf-8")).decode("ascii")


def _keep_latest(beatmaps: dict[str, Beatmap], beatmap: Beatmap) -> None:
    current = beatmaps.get(beatmap.hash)
    if current is not None and current.last_played and beatmap.last_played:
        if current.last_played >= beatmap.last_played:
            return
    beatmaps[beatmap.hash] = beatmap


def _decode_stable(config: ImportConfig) -> tuple[LedgerContents, Catalog, list[str]]:
    ledger = read_ledger(config.scores_db, config.alias_names)
    warnings: list[str] = []
    catalog_path = config.catalog_db
    if catalog_path is not None and catalog_path.is_file():
        try:
            catalog, warnings = load_catalog(catalog_path)
        except SourceNotFound as exc:
            logger.warning("Catalog unreadable, importing without metadata: %s", exc)
            catalog, warnings = Catalog(), [str(exc)]
    else:
        logger.warning("No catalog at %s, importing without metadata", catalog_path)
        catalog = Catalog()
        warnings.append(f"Catalog not found: {catalog_path}")
    return ledger, catalog, warnings


def _prepare_stable(
    config: ImportConfig,
    ledger: LedgerContents,
    catalog: Catalog,
    index: DeduplicationIndex,
    enricher: _Enricher,
) -> tuple[list[RecordOutcome], list[Play], dict[str, Beatmap]]:
    outcomes: list[RecordOutcome] = []
    plays: list[Play] = []
    beatmaps: dict[str, Beatmap] = {}

    for outcome in ledger.outcomes:
        if outcome.value is None:
            outcomes.append(outcome)
            continue
        score = outcome.value
        try:
            entry = catalog.get(score.beatmap_hash)
            record = normalize_stable(score, entry, config.stable_root)
            if index.is_duplicate(record.play):
                outcomes.append(RecordOutcome.duplicate())
                continue

            play = record.play
            parsed = enricher.parsed(play.map_path)
            if parsed is not None:
                play = enricher.annotator.annotate(play)
                bits = mods_to_bitmask(play.mods)
                check_legacy_score(play.score, parsed, play.mods, clock_rate(bits))

            replay_file = link_replay(
                config.stable_root, score.replay_hash, score.beatmap_hash, score.timestamp
            )
            if replay_file:
                play = play.model_copy(update={"replay_file": replay_file})
                play = enricher.attach_analysis(play, replay_file)

            beatmap = None
            if record.beatmap is not None:
                beatmap = enricher.complete_beatmap(record.beatmap, play.map_path or None)
                background = _stable_background(config.stable_root, entry.folder_name, parsed)
                if background:
                    beatmap = beatmap.model_copy(update={"background_hash": background})

            # admitted only once nothing else can fail
            index.admit(record.play)
            plays.append(play)
            if beatmap is not None:
                _keep_latest(beatmaps, beatmap)
            outcomes.append(RecordOutcome.accepted(play))
        except (PlayHistoryError, OSError, ValueError, ArithmeticError) as exc:
            logger.warning("Skipping stable score on %s: %s", score.beatmap_hash, exc)
            outcomes.append(RecordOutcome.failed(str(exc)))
    return outcomes, plays, beatmaps


async def _finish_pass(
    store: Store,
    summary: ImportSummary,
    outcomes: list[RecordOutcome],
    plays: list[Play],
    beatmaps: list[Beatmap],
) -> ImportSummary:
    inserted = await store.write_batch(beatmaps, plays)
    fold_outcomes(summary, outcomes)
    # the unique index caught what the in-memory index missed
    backstop = len(plays) - inserted
    if backstop:
        summary.added -= backstop
        summary.skipped += backstop
    summary.beatmaps = len(beatmaps)
    await store.set_meta(f"last_{summary.source}_import", summary.model_dump_json())
    return summary


async def run_stable_import(
    config: ImportConfig,
    store: Store,
    annotator: Optional[PerformanceAnnotator] = None,
    analyzer: Optional[ReplayHitAnalyzer] = None,
) -> ImportSummary:
    """Import the stable client's score ledger."""
    summary = ImportSummary(source=STABLE_SOURCE)
    if config.stable_root is None:
        summary.error = "Stable client path is not configured"
        return summary

    logger.info("Running stable import from %s", config.stable_root)
    try:
        ledger, catalog, warnings = await asyncio.to_thread(_decode_stable, config)
        summary.warnings.extend(warnings)

        index = DeduplicationIndex(await store.load_signatures())
        enricher = _Enricher(
            annotator or PerformanceAnnotator(),
            analyzer or ReplayHitAnalyzer(),
            config.analyze_replays,
        )
        outcomes, plays, beatmaps = await asyncio.to_thread(
            _prepare_stable, config, ledger, catalog, index, enricher
        )
        await _finish_pass(store, summary, outcomes, plays, list(beatmaps.values()))
    except PlayHistoryError as exc:
        logger.error("Stable import failed: %s", exc)
        summary.error = str(exc)
        return summary
    except Exception as exc:
        logger.error("Stable import failed: %s", exc, exc_info=True)
        summary.error = f"Import failed: {exc}"
        return summary

    logger.info(
        "Stable import complete: %d added, %d skipped, %d filtered",
        summary.added, summary.skipped, summary.filtered,
    )
    return summary


def _prepare_dynamic(
    contents: DynamicStoreContents,
    known: dict[str, Beatmap],
    files_root: Path,
    index: DeduplicationIndex,
    enricher: _Enricher,
) -> tuple[list[RecordOutcome], list[Play], dict[str, Beatmap]]:
    beatmaps: dict[str, Beatmap] = {}
    for record in contents.beatmaps:
        beatmap = beatmap_from_dynamic(record, enricher.parsed(record.osu_file_path))
        beatmap = enricher.complete_beatmap(beatmap, record.osu_file_path)
        previous = known.get(beatmap.hash)
        if beatmap.total_objects == 0 and previous is not None and previous.total_objects:
            beatmap = beatmap.model_copy(update={
                "circles": previous.circles,
                "sliders": previous.sliders,
                "spinners": previous.spinners,
            })
        beatmaps[beatmap.hash] = beatmap

    outcomes: list[RecordOutcome] = [
        RecordOutcome.failed("unreadable beatmap") for _ in range(contents.beatmap_failures)
    ]
    plays: list[Play] = []
    for outcome in contents.outcomes:
        if outcome.value is None:
            outcomes.append(outcome)
            continue
        score = outcome.value
        try:
            beatmap = beatmaps.get(score.beatmap_hash) or known.get(score.beatmap_hash)
            play = normalize_dynamic(score, beatmap).play
            if index.is_duplicate(play):
                outcomes.append(RecordOutcome.duplicate())
                continue
            if play.map_path:
                play = enricher.annotator.annotate(play)
            if score.replay_hash:
                play = enricher.attach_analysis(play, str(blob_path(files_root, score.replay_hash)))
            index.admit(play)
            plays.append(play)
            outcomes.append(RecordOutcome.accepted(play))
        except (PlayHistoryError, OSError, ValueError, ArithmeticError) as exc:
            logger.warning("Skipping dynamic score on %s: %s", score.beatmap_hash, exc)
            outcomes.append(RecordOutcome.failed(str(exc)))
    return outcomes, plays, beatmaps


async def run_dynamic_import(
    config: ImportConfig,
    store: Store,
    engine: StoreEngine,
    annotator: Optional[PerformanceAnnotator] = None,
    analyzer: Optional[ReplayHitAnalyzer] = None,
) -> ImportSummary:
    """Import beatmaps and the local player's scores from the dynamic store."""
    summary = ImportSummary(source=DYNAMIC_SOURCE)
    store_file = config.store_file
    if store_file is None:
        summary.error = "Dynamic store path is not configured"
        return summary

    logger.info("Running dynamic import from %s", store_file)
    try:
        reader = DynamicStoreReader(engine, config.scratch)
        contents = await asyncio.to_thread(
            reader.read, store_file, config.files_root, config.username, config.aliases
        )
        known = await store.get_beatmaps()
        index = DeduplicationIndex(await store.load_signatures())
        enricher = _Enricher(
            annotator or PerformanceAnnotator(),
            analyzer or ReplayHitAnalyzer(),
            config.analyze_replays,
        )
        outcomes, plays, beatmaps = await asyncio.to_thread(
            _prepare_dynamic, contents, known, config.files_root, index, enricher
        )
        await _finish_pass(store, summary, outcomes, plays, list(beatmaps.values()))
    except PlayHistoryError as exc:
        logger.error("Dynamic import failed: %s", exc)
        summary.error = str(exc)
        return summary
    except Exception as exc:
        logger.error("Dynamic import failed: %s", exc, exc_info=True)
        summary.error = f"Import failed: {exc}"
        return summary

    logger.info(
        "Dynamic import complete: %d added, %d skipped, %d filtered",
        summary.added, summary.skipped, summary.filtered,
    )
    return summary


async def record_live_play(
    store: Store,
    play: Play,
    index: Optional[DeduplicationIndex] = None,
) -> Optional[int]:
    """Store a play observed live. Returns its id, or None for a duplicate."""
    if index is not None and not index.admit(play):
        logger.info("Live play already recorded: %s", play.signature)
        return None
    play_id = await store.insert_play(play)
    if play_id is None:
        logger.info("Live play already recorded: %s", play.signature)
    return play_id


async def analyze_replay(
    beatmap_path: str | Path,
    replay_path: str | Path,
    store: Optional[Store] = None,
    play_id: Optional[int] = None,
    analyzer: Optional[ReplayHitAnalyzer] = None,
) -> HitAnalysis:
    """Analyze a beatmap/replay pair, attaching the result to a stored play if given."""
    analyzer = analyzer or ReplayHitAnalyzer()
    analysis = await asyncio.to_thread(analyzer.analyze, beatmap_path, replay_path)
    if store is not None and play_id is not None:
        await store.update_replay(play_id, str(replay_path))
        await store.update_hit_analysis(play_id, analysis)
    return analysis
