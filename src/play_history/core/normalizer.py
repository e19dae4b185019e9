"""Raw source records → canonical Play/Beatmap records.

The normalizer is pure: no file access, no clock, no randomness. The same
raw record always normalizes to the same output.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from .beatmap_file import BeatmapFile
from .models import (
    Beatmap,
    CanonicalRecord,
    CatalogEntry,
    DynamicBeatmap,
    DynamicScore,
    Outcome,
    Play,
    Provenance,
    StableScore,
)
from .mods import canonical_mods, mods_from_bitmask, parse_mods_json
from .scoring import (
    accuracy,
    classic_score,
    grade_from_judgements,
    grade_from_rank,
    unstable_rate,
)
from .sources.catalog import lookup_stars

logger = logging.getLogger(__name__)

STABLE_NOTE = "Imported from scores.db"

STABLE_STATUS = {
    0: "Unknown",
    1: "Unsubmitted",
    2: "Pending",
    3: "Unknown",
    4: "Ranked",
    5: "Approved",
    6: "Qualified",
    7: "Loved",
}

DYNAMIC_STATUS = {
    -4: "LocallyModified",
    -3: "None",
    -2: "Graveyard",
    -1: "WIP",
    0: "Pending",
    1: "Ranked",
    2: "Approved",
    3: "Qualified",
    4: "Loved",
}


def stable_map_path(stable_root: Optional[str | Path], entry: Optional[CatalogEntry]) -> str:
    if stable_root is None or entry is None or not entry.file_name:
        return ""
    return str(Path(stable_root) / "Songs" / entry.folder_name / entry.file_name)


def normalize_stable(
    score: StableScore,
    entry: Optional[CatalogEntry] = None,
    stable_root: Optional[str | Path] = None,
) -> CanonicalRecord:
    """Canonicalize one ledger score and its catalog entry."""
    # every stable score is a classic-scoring play
    mods = canonical_mods(mods_from_bitmask(score.mods) + ["CL"])
    map_path = stable_map_path(stable_root, entry)
    stars = lookup_stars(entry, score.mods)

    play = Play(
        created_at=score.timestamp,
        outcome=Outcome.PASS,
        beatmap_hash=score.beatmap_hash,
        beatmap_name=entry.display_name if entry else f"[Stable] {score.beatmap_hash[:8]}",
        mods=mods,
        count300=score.count300,
        count100=score.count100,
        count50=score.count50,
        count_geki=score.count_geki,
        count_katu=score.count_katu,
        misses=score.misses,
        max_combo=score.max_combo,
        score=score.score,
        accuracy=accuracy(score.count300, score.count100, score.count50, score.misses),
        grade=grade_from_judgements(
            score.count300, score.count100, score.count50, score.misses, mods
        ),
        stars=stars,
        duration_ms=entry.total_time if entry else 0,
        replay_hash=score.replay_hash,
        map_path=map_path,
        notes=STABLE_NOTE,
        provenance=Provenance.STABLE_IMPORT,
    )

    beatmap = None
    if entry is not None:
        beatmap = Beatmap(
            hash=score.beatmap_hash,
            title=entry.title,
            artist=entry.artist,
            mapper=entry.creator,
            version=entry.version,
            length_ms=float(entry.total_time),
            circles=entry.circles,
            sliders=entry.sliders,
            spinners=entry.spinners,
            ar=entry.ar,
            cs=entry.cs,
            od=entry.od,
            hp=entry.hp,
            stars=entry.star_ratings.get(0) or stars,
            status=STABLE_STATUS.get(entry.ranked_status, "Unknown"),
            last_played=score.timestamp,
            osu_file_path=map_path or None,
        )
    return CanonicalRecord(play=play, beatmap=beatmap)


def parse_statistics(text: str) -> dict[str, int]:
    """Judgement counts keyed by lower-case name without underscores."""
    try:
        raw = json.loads(text or "{}")
    except json.JSONDecodeError:
        logger.debug("Unparseable statistics: %r", text)
        return {}
    if not isinstance(raw, dict):
        return {}
    stats: dict[str, int] = {}
    for key, value in raw.items():
        name = str(key).lower().replace("_", "")
        try:
            stats[name] = stats.get(name, 0) + int(value)
        except (TypeError, ValueError):
            continue
    return stats


def normalize_dynamic(
    score: DynamicScore,
    beatmap: Optional[Beatmap] = None,
) -> CanonicalRecord:
    """Canonicalize one dynamic-store score.

    The reported score is rescaled to the classic scale when ``beatmap``
    knows its object count.
    """
    stats = parse_statistics(score.statistics_json)
    mods = canonical_mods(parse_mods_json(score.mods_json))
    total_objects = beatmap.total_objects if beatmap else 0

    play = Play(
        created_at=score.date,
        outcome=Outcome.FAIL if score.rank < 0 else Outcome.PASS,
        beatmap_hash=score.beatmap_hash,
        beatmap_name=f"{score.beatmap_artist} - {score.beatmap_title} [{score.beatmap_version}]",
        mods=mods,
        count300=stats.get("great", 0),
        count100=stats.get("ok", 0),
        count50=stats.get("meh", 0),
        misses=stats.get("miss", 0),
        slider_tail_hits=stats.get("slidertailhit", 0),
        large_tick_hits=stats.get("largetickhit", 0),
        small_tick_hits=stats.get("smalltickhit", 0),
        max_combo=score.max_combo,
        score=classic_score(total_objects, score.total_score),
        reported_score=score.total_score,
        accuracy=score.accuracy,
        grade=grade_from_rank(score.rank),
        pp=score.pp or 0.0,
        stars=score.star_rating,
        unstable_rate=unstable_rate(score.hit_offsets),
        hit_offsets=list(score.hit_offsets),
        duration_ms=int(score.beatmap_length),
        replay_hash=score.replay_hash,
        map_path=(beatmap.osu_file_path or "") if beatmap else "",
        provenance=Provenance.DYNAMIC_IMPORT,
    )
    return CanonicalRecord(play=play, beatmap=beatmap)


def beatmap_from_dynamic(record: DynamicBeatmap, parsed: Optional[BeatmapFile] = None) -> Beatmap:
    """Build the canonical beatmap; object counts come from the parsed .osu file."""
    return Beatmap(
        hash=record.hash,
        title=record.title,
        artist=record.artist,
        mapper=record.mapper,
        version=record.version,
        bpm=record.bpm,
        length_ms=record.length_ms or (parsed.length_ms if parsed else 0.0),
        circles=parsed.circles if parsed else 0,
        sliders=parsed.sliders if parsed else 0,
        spinners=parsed.spinners if parsed else 0,
        ar=record.ar or (parsed.approach_rate if parsed else 0.0),
        cs=record.cs,
        od=record.od,
        hp=record.hp,
        stars=record.stars,
        status=dynamic_status(record.status),
        background_hash=record.background_hash,
        last_played=record.last_played,
        osu_file_path=record.osu_file_path,
    )


def dynamic_status(status: str) -> str:
    try:
        return DYNAMIC_STATUS.get(int(status), status)
    except ValueError:
        return status
