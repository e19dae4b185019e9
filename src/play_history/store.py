"""Idempotent persistence for plays and beatmaps.

Plays are insert-or-ignore against the unique dedup index, beatmaps are
upserted by hash without ever downgrading a known value to an empty one.
Every operation uses its own short-lived session.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .core.models import (
    Beatmap,
    DedupSignature,
    HitAnalysis,
    Outcome,
    Play,
    Provenance,
    parse_utc_iso,
    utc_iso,
)
from .core.mods import format_mods, parse_mods_text
from .db import get_db_url, init_db, make_engine, make_session_factory
from .sqlmodels import BeatmapRecord, IngestionMeta, PlayRecord

logger = logging.getLogger(__name__)

# beatmap columns where an empty incoming value keeps the stored one
_KEEP_TEXT = ("title", "artist", "mapper", "version", "status", "background_hash", "osu_file_path")
_KEEP_NUMBER = (
    "cs", "ar", "od", "hp", "bpm", "length_ms",
    "circles", "sliders", "spinners", "max_combo", "stars",
)


def play_to_row(play: Play) -> dict:
    return {
        "created_at_utc": utc_iso(play.created_at),
        "outcome": play.outcome.value,
        "duration_ms": play.duration_ms,
        "beatmap": play.beatmap_name,
        "beatmap_hash": play.beatmap_hash,
        "mods": format_mods(play.mods),
        "stars": play.stars,
        "accuracy": play.accuracy,
        "score": play.score,
        "reported_score": play.reported_score,
        "combo": play.max_combo,
        "count300": play.count300,
        "count100": play.count100,
        "count50": play.count50,
        "count_geki": play.count_geki,
        "count_katu": play.count_katu,
        "misses": play.misses,
        "slider_tail_hits": play.slider_tail_hits,
        "large_tick_hits": play.large_tick_hits,
        "small_tick_hits": play.small_tick_hits,
        "pp": play.pp,
        "rank": play.grade,
        "hit_offsets": ",".join(f"{o:.2f}" for o in play.hit_offsets),
        "cursor_offsets": play.cursor_offsets,
        "ur": play.unstable_rate,
        "replay_file": play.replay_file,
        "replay_hash": play.replay_hash,
        "map_path": play.map_path,
        "hit_errors": json.dumps(play.hit_offsets) if play.hit_offsets else None,
        "notes": play.notes,
        "key_ratio": play.key_ratio,
        "provenance": play.provenance.value,
    }


def play_from_row(row: PlayRecord) -> Play:
    offsets = [float(o) for o in row.hit_offsets.split(",") if o] if row.hit_offsets else []
    return Play(
        id=row.id,
        created_at=parse_utc_iso(row.created_at_utc),
        outcome=Outcome(row.outcome) if row.outcome in ("pass", "fail") else Outcome.PASS,
        beatmap_hash=row.beatmap_hash or "",
        beatmap_name=row.beatmap,
        mods=parse_mods_text(row.mods),
        count300=row.count300,
        count100=row.count100,
        count50=row.count50,
        count_geki=row.count_geki or 0,
        count_katu=row.count_katu or 0,
        misses=row.misses,
        slider_tail_hits=row.slider_tail_hits or 0,
        large_tick_hits=row.large_tick_hits or 0,
        small_tick_hits=row.small_tick_hits or 0,
        max_combo=row.combo,
        score=row.score,
        reported_score=row.reported_score or 0,
        accuracy=row.accuracy,
        grade=row.rank or "",
        pp=row.pp or 0.0,
        stars=row.stars,
        unstable_rate=row.ur or 0.0,
        hit_offsets=offsets,
        key_ratio=row.key_ratio or 0.0,
        duration_ms=row.duration_ms or 0,
        replay_file=row.replay_file or "",
        replay_hash=row.replay_hash or "",
        map_path=row.map_path or "",
        notes=row.notes or "",
        cursor_offsets=row.cursor_offsets or "",
        provenance=Provenance(row.provenance) if row.provenance else Provenance.LIVE_CAPTURE,
    )


def beatmap_to_row(beatmap: Beatmap) -> dict:
    return {
        "hash": beatmap.hash,
        "title": beatmap.title,
        "artist": beatmap.artist,
        "mapper": beatmap.mapper,
        "version": beatmap.version,
        "cs": beatmap.cs,
        "ar": beatmap.ar,
        "od": beatmap.od,
        "hp": beatmap.hp,
        "bpm": beatmap.bpm,
        "length_ms": beatmap.length_ms,
        "circles": beatmap.circles,
        "sliders": beatmap.sliders,
        "spinners": beatmap.spinners,
        "max_combo": beatmap.max_combo,
        "stars": beatmap.stars,
        "status": beatmap.status,
        "last_played_utc": utc_iso(beatmap.last_played) if beatmap.last_played else None,
        "background_hash": beatmap.background_hash,
        "osu_file_path": beatmap.osu_file_path,
    }


def beatmap_from_row(row: BeatmapRecord) -> Beatmap:
    return Beatmap(
        hash=row.hash,
        title=row.title or "",
        artist=row.artist or "",
        mapper=row.mapper or "",
        version=row.version or "",
        bpm=row.bpm or 0.0,
        length_ms=row.length_ms or 0.0,
        circles=row.circles or 0,
        sliders=row.sliders or 0,
        spinners=row.spinners or 0,
        max_combo=row.max_combo or 0,
        ar=row.ar or 0.0,
        cs=row.cs or 0.0,
        od=row.od or 0.0,
        hp=row.hp or 0.0,
        stars=row.stars or 0.0,
        status=row.status or "",
        background_hash=row.background_hash,
        last_played=parse_utc_iso(row.last_played_utc) if row.last_played_utc else None,
        osu_file_path=row.osu_file_path,
    )


def _beatmap_upsert(rows: list[dict]):
    stmt = sqlite_insert(BeatmapRecord).values(rows)
    incoming = stmt.excluded
    current = BeatmapRecord.__table__.c
    merged = {}
    for name in _KEEP_TEXT:
        merged[name] = func.coalesce(func.nullif(incoming[name], ""), current[name])
    for name in _KEEP_NUMBER:
        merged[name] = case((incoming[name] > 0, incoming[name]), else_=current[name])
    merged["last_played_utc"] = case(
        (current.last_played_utc.is_(None), incoming.last_played_utc),
        (incoming.last_played_utc > current.last_played_utc, incoming.last_played_utc),
        else_=current.last_played_utc,
    )
    return stmt.on_conflict_do_update(index_elements=["hash"], set_=merged)


class Store:
    """Async facade over the SQLite play history database."""

    def __init__(self, db_path: Optional[str | Path] = None):
        if db_path is not None:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.url = get_db_url(db_path)
        self.engine = make_engine(self.url)
        self.session_factory = make_session_factory(self.engine)

    async def init(self) -> "Store":
        await init_db(self.engine)
        return self

    async def close(self):
        await self.engine.dispose()

    async def __aenter__(self) -> "Store":
        return await self.init()

    async def __aexit__(self, *exc_info):
        await self.close()

    # ─── Reads ───────────────────────────────────────────────────────────

    async def load_signatures(self) -> set[DedupSignature]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    PlayRecord.beatmap_hash,
                    PlayRecord.score,
                    PlayRecord.reported_score,
                    PlayRecord.created_at_utc,
                )
            )
            signatures = set()
            for beatmap_hash, score, reported, created_at in result:
                signatures.add(DedupSignature(beatmap_hash or "", int(score), created_at))
                if reported:
                    signatures.add(DedupSignature(beatmap_hash or "", int(reported), created_at))
            return signatures

    async def count_plays(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(PlayRecord))
            return result.scalar_one()

    async def recent_plays(self, limit: int = 50) -> list[Play]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PlayRecord).order_by(PlayRecord.created_at_utc.desc()).limit(limit)
            )
            return [play_from_row(r) for r in result.scalars().all()]

    async def get_play(self, play_id: int) -> Optional[Play]:
        async with self.session_factory() as session:
            row = await session.get(PlayRecord, play_id)
            return play_from_row(row) if row else None

    async def get_beatmap(self, beatmap_hash: str) -> Optional[Beatmap]:
        async with self.session_factory() as session:
            row = await session.get(BeatmapRecord, beatmap_hash)
            return beatmap_from_row(row) if row else None

    async def get_beatmaps(self) -> dict[str, Beatmap]:
        async with self.session_factory() as session:
            result = await session.execute(select(BeatmapRecord))
            return {r.hash: beatmap_from_row(r) for r in result.scalars().all()}

    # ─── Writes ──────────────────────────────────────────────────────────

    async def insert_play(self, play: Play) -> Optional[int]:
        """Insert one play. Returns its id, or None when it was a duplicate."""
        stmt = sqlite_insert(PlayRecord).values(play_to_row(play)).on_conflict_do_nothing()
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            if not result.rowcount:
                return None
            return result.lastrowid

    async def upsert_beatmap(self, beatmap: Beatmap):
        await self.upsert_beatmaps([beatmap])

    async def upsert_beatmaps(self, beatmaps: Iterable[Beatmap]):
        rows = [beatmap_to_row(b) for b in beatmaps]
        if not rows:
            return
        async with self.session_factory() as session:
            for row in rows:
                await session.execute(_beatmap_upsert([row]))
            await session.commit()

    async def write_batch(self, beatmaps: Iterable[Beatmap], plays: Iterable[Play]) -> int:
        """Upsert beatmaps and insert plays in one transaction.

        Returns the number of plays actually inserted; rows the unique index
        rejects are ignored.
        """
        inserted = 0
        async with self.session_factory() as session:
            for beatmap in beatmaps:
                await session.execute(_beatmap_upsert([beatmap_to_row(beatmap)]))
            for play in plays:
                stmt = sqlite_insert(PlayRecord).values(play_to_row(play)).on_conflict_do_nothing()
                result = await session.execute(stmt)
                inserted += result.rowcount or 0
            await session.commit()
        return inserted

    async def _update_play(self, play_id: int, **values) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(PlayRecord).where(PlayRecord.id == play_id).values(**values)
            )
            await session.commit()
            return bool(result.rowcount)

    async def update_replay(self, play_id: int, replay_file: str, replay_hash: Optional[str] = None) -> bool:
        values = {"replay_file": replay_file}
        if replay_hash is not None:
            values["replay_hash"] = replay_hash
        return await self._update_play(play_id, **values)

    async def update_hit_analysis(self, play_id: int, analysis: HitAnalysis) -> bool:
        return await self._update_play(
            play_id,
            ur=analysis.unstable_rate,
            hit_errors=json.dumps(analysis.hit_errors),
            key_ratio=analysis.key_ratio,
        )

    async def update_notes(self, play_id: int, notes: str) -> bool:
        return await self._update_play(play_id, notes=notes)

    async def update_cursor_offsets(self, play_id: int, cursor_offsets: str) -> bool:
        return await self._update_play(play_id, cursor_offsets=cursor_offsets)

    async def wipe(self) -> tuple[int, int]:
        """Delete every play and beatmap. Returns (plays, beatmaps) removed."""
        async with self.session_factory() as session:
            plays = await session.execute(delete(PlayRecord))
            beatmaps = await session.execute(delete(BeatmapRecord))
            await session.commit()
        logger.warning("Wiped %d plays and %d beatmaps", plays.rowcount, beatmaps.rowcount)
        return plays.rowcount or 0, beatmaps.rowcount or 0

    # ─── Pass bookkeeping ────────────────────────────────────────────────

    async def get_meta(self, key: str) -> Optional[str]:
        async with self.session_factory() as session:
            result = await session.execute(select(IngestionMeta).where(IngestionMeta.key == key))
            row = result.scalar_one_or_none()
            return row.value if row else None

    async def set_meta(self, key: str, value: str):
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            result = await session.execute(select(IngestionMeta).where(IngestionMeta.key == key))
            row = result.scalar_one_or_none()
            if row:
                row.value = value
                row.updated_at = now
            else:
                session.add(IngestionMeta(key=key, value=value, updated_at=now))
            await session.commit()
