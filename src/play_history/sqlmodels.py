"""SQLAlchemy models for the local play history database.

Timestamps are stored as UTC ISO-8601 text so the dedup signature can be
compared directly against the stored column. The unique dedup index is not
declared here: it is created by the store's migration after any
pre-existing duplicates have been collapsed.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PlayRecord(Base):
    """One stored play."""

    __tablename__ = "plays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at_utc: Mapped[str] = mapped_column(Text, nullable=False)
    outcome: Mapped[str] = mapped_column(Text, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    beatmap: Mapped[str] = mapped_column(Text, nullable=False)
    beatmap_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    mods: Mapped[str] = mapped_column(Text, nullable=False)
    stars: Mapped[float | None] = mapped_column(Float, nullable=True)
    accuracy: Mapped[float] = mapped_column(Float, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    combo: Mapped[int] = mapped_column(Integer, nullable=False)
    count300: Mapped[int] = mapped_column(Integer, nullable=False)
    count100: Mapped[int] = mapped_column(Integer, nullable=False)
    count50: Mapped[int] = mapped_column(Integer, nullable=False)
    misses: Mapped[int] = mapped_column(Integer, nullable=False)
    pp: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rank: Mapped[str] = mapped_column(Text, nullable=False, default="")
    hit_offsets: Mapped[str] = mapped_column(Text, nullable=False, default="")
    replay_file: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # columns below were added after the first schema and may be missing
    # from older databases until the column check adds them
    count_geki: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    count_katu: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    slider_tail_hits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    large_tick_hits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    small_tick_hits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cursor_offsets: Mapped[str] = mapped_column(Text, nullable=False, default="")
    replay_hash: Mapped[str] = mapped_column(Text, nullable=False, default="")
    map_path: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ur: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    hit_errors: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    key_ratio: Mapped[float | None] = mapped_column(Float, nullable=True, default=0.0)
    provenance: Mapped[str] = mapped_column(Text, nullable=False, default="live-capture")
    reported_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BeatmapRecord(Base):
    """One stored beatmap difficulty, keyed by content hash."""

    __tablename__ = "beatmaps"

    hash: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str | None] = mapped_column(Text)
    artist: Mapped[str | None] = mapped_column(Text)
    mapper: Mapped[str | None] = mapped_column(Text)
    version: Mapped[str | None] = mapped_column(Text)
    cs: Mapped[float | None] = mapped_column(Float)
    ar: Mapped[float | None] = mapped_column(Float)
    od: Mapped[float | None] = mapped_column(Float)
    hp: Mapped[float | None] = mapped_column(Float)
    bpm: Mapped[float | None] = mapped_column(Float)
    length_ms: Mapped[float | None] = mapped_column(Float)
    circles: Mapped[int | None] = mapped_column(Integer)
    sliders: Mapped[int | None] = mapped_column(Integer)
    spinners: Mapped[int | None] = mapped_column(Integer)
    max_combo: Mapped[int | None] = mapped_column(Integer)
    stars: Mapped[float | None] = mapped_column(Float)
    status: Mapped[str | None] = mapped_column(Text)
    last_played_utc: Mapped[str | None] = mapped_column(Text)
    background_hash: Mapped[str | None] = mapped_column(Text)
    osu_file_path: Mapped[str | None] = mapped_column(Text)


class IngestionMeta(Base):
    """Bookkeeping for import passes (last run, last result)."""

    __tablename__ = "ingestion_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# additive schema evolution: (table, column, DDL type) for every column that
# an older database might lack
OPTIONAL_COLUMNS: list[tuple[str, str, str]] = [
    ("plays", "count_geki", "INTEGER NOT NULL DEFAULT 0"),
    ("plays", "count_katu", "INTEGER NOT NULL DEFAULT 0"),
    ("plays", "slider_tail_hits", "INTEGER NOT NULL DEFAULT 0"),
    ("plays", "large_tick_hits", "INTEGER NOT NULL DEFAULT 0"),
    ("plays", "small_tick_hits", "INTEGER NOT NULL DEFAULT 0"),
    ("plays", "cursor_offsets", "TEXT NOT NULL DEFAULT ''"),
    ("plays", "replay_hash", "TEXT NOT NULL DEFAULT ''"),
    ("plays", "map_path", "TEXT NOT NULL DEFAULT ''"),
    ("plays", "ur", "REAL NOT NULL DEFAULT 0"),
    ("plays", "hit_errors", "TEXT"),
    ("plays", "notes", "TEXT NOT NULL DEFAULT ''"),
    ("plays", "key_ratio", "REAL DEFAULT 0"),
    ("plays", "provenance", "TEXT NOT NULL DEFAULT 'live-capture'"),
    ("plays", "reported_score", "INTEGER NOT NULL DEFAULT 0"),
    ("beatmaps", "max_combo", "INTEGER"),
    ("beatmaps", "status", "TEXT"),
    ("beatmaps", "background_hash", "TEXT"),
    ("beatmaps", "osu_file_path", "TEXT"),
]
