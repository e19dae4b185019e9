"""Pydantic data models: the shared business objects.

Readers produce the raw source records (StableScore, CatalogEntry,
DynamicScore, DynamicBeatmap); the normalizer turns them into the canonical
Play/Beatmap pair that the dedup index, annotators and store work with.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple, Optional

from pydantic import BaseModel, Field, field_validator

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_iso(value: datetime) -> str:
    """The one text form of a timestamp used for storage and signatures."""
    return ensure_utc(value).strftime(ISO_FORMAT)


def parse_utc_iso(text: str) -> datetime:
    """Parse stored timestamp text, tolerating offsets written by older rows."""
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


class Outcome(str, Enum):
    """How an attempt ended."""

    PASS = "pass"
    FAIL = "fail"


class Provenance(str, Enum):
    """Which capture path produced a play."""

    LIVE_CAPTURE = "live-capture"
    STABLE_IMPORT = "stable-import"
    DYNAMIC_IMPORT = "dynamic-import"


class DedupSignature(NamedTuple):
    """Durable identity of one physical play across every capture path."""

    beatmap_hash: str
    score: int
    created_at_utc: str

    @classmethod
    def of(cls, beatmap_hash: str, score: int, created_at: datetime) -> "DedupSignature":
        return cls(beatmap_hash or "", int(score), utc_iso(created_at))


# ─── Canonical records ───────────────────────────────────────────────────────


class Beatmap(BaseModel):
    """One playable map difficulty, keyed by its content hash."""

    hash: str
    title: str = ""
    artist: str = ""
    mapper: str = ""
    version: str = ""
    bpm: float = 0.0
    length_ms: float = 0.0
    circles: int = 0
    sliders: int = 0
    spinners: int = 0
    max_combo: int = 0
    ar: float = 0.0
    cs: float = 0.0
    od: float = 0.0
    hp: float = 0.0
    stars: float = 0.0
    status: str = ""
    background_hash: Optional[str] = None
    last_played: Optional[datetime] = None
    osu_file_path: Optional[str] = None

    @field_validator("last_played")
    @classmethod
    def _last_played_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @property
    def total_objects(self) -> int:
        return self.circles + self.sliders + self.spinners

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title} [{self.version}]"


class Play(BaseModel):
    """One completed or failed attempt at a beatmap."""

    id: Optional[int] = None
    created_at: datetime
    outcome: Outcome = Outcome.PASS
    beatmap_hash: str
    beatmap_name: str = ""
    mods: tuple[str, ...] = ()
    count300: int = 0
    count100: int = 0
    count50: int = 0
    count_geki: int = 0
    count_katu: int = 0
    misses: int = 0
    slider_tail_hits: int = 0
    large_tick_hits: int = 0
    small_tick_hits: int = 0
    max_combo: int = 0
    score: int = 0
    # score as the source reported it, before rescaling; 0 when never rescaled
    reported_score: int = 0
    accuracy: float = 0.0
    grade: str = ""
    pp: float = 0.0
    stars: Optional[float] = None
    unstable_rate: float = 0.0
    hit_offsets: list[float] = Field(default_factory=list)
    key_ratio: float = 0.0
    duration_ms: int = 0
    replay_file: str = ""
    replay_hash: str = ""
    map_path: str = ""
    notes: str = ""
    cursor_offsets: str = ""
    provenance: Provenance = Provenance.LIVE_CAPTURE

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def signature(self) -> DedupSignature:
        return DedupSignature.of(self.beatmap_hash, self.score, self.created_at)

    @property
    def signatures(self) -> tuple[DedupSignature, ...]:
        """Every identity the play is known by.

        A rescaled score depends on the object count known at import time,
        so the reported score is an identity of its own.
        """
        if self.reported_score and self.reported_score != self.score:
            return (self.signature, DedupSignature.of(self.beatmap_hash, self.reported_score, self.created_at))
        return (self.signature,)

    @property
    def hit_count(self) -> int:
        return self.count300 + self.count100 + self.count50 + self.misses


class CanonicalRecord(BaseModel):
    """Normalizer output: a play plus whatever beatmap metadata came with it."""

    play: Play
    beatmap: Optional[Beatmap] = None


# ─── Raw source records ──────────────────────────────────────────────────────


class StableScore(BaseModel):
    """One score entry decoded from the binary ledger."""

    ruleset: int
    version: int
    beatmap_hash: str
    player_name: str
    replay_hash: str = ""
    count300: int = 0
    count100: int = 0
    count50: int = 0
    count_geki: int = 0
    count_katu: int = 0
    misses: int = 0
    score: int = 0
    max_combo: int = 0
    perfect: bool = False
    mods: int = 0
    timestamp: datetime
    online_id: int = 0


class CatalogEntry(BaseModel):
    """Display metadata for one beatmap from the binary catalog."""

    hash: str
    artist: str = ""
    title: str = ""
    creator: str = ""
    version: str = ""
    file_name: str = ""
    folder_name: str = ""
    ranked_status: int = 0
    circles: int = 0
    sliders: int = 0
    spinners: int = 0
    ar: float = 0.0
    cs: float = 0.0
    hp: float = 0.0
    od: float = 0.0
    star_ratings: dict[int, float] = Field(default_factory=dict)
    drain_time: int = 0
    total_time: int = 0
    beatmap_id: int = 0
    set_id: int = 0
    mode: int = 0

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title} [{self.version}]"


class DynamicScore(BaseModel):
    """One score read from the dynamic-schema store through the adapters."""

    username: str = "Guest"
    online_id: int = 0
    ruleset: Optional[str] = None
    accuracy: float = 0.0
    max_combo: int = 0
    rank: int = 0
    date: datetime
    pp: Optional[float] = None
    total_score: int = 0
    mods_json: str = "[]"
    statistics_json: str = "{}"
    beatmap_hash: str = ""
    replay_hash: str = ""
    hit_offsets: list[float] = Field(default_factory=list)
    beatmap_title: str = "Unknown"
    beatmap_artist: str = "Unknown"
    beatmap_version: str = ""
    beatmap_length: float = 0.0
    star_rating: float = 0.0


class DynamicBeatmap(BaseModel):
    """One beatmap difficulty read from the dynamic-schema store."""

    hash: str
    sha_hash: str = ""
    ruleset: Optional[str] = None
    title: str = "Unknown"
    artist: str = "Unknown"
    mapper: str = "Unknown"
    version: str = ""
    stars: float = 0.0
    length_ms: float = 0.0
    bpm: float = 0.0
    status: str = "Unknown"
    last_played: Optional[datetime] = None
    cs: float = 0.0
    ar: float = 0.0
    od: float = 0.0
    hp: float = 0.0
    osu_file_path: Optional[str] = None
    background_hash: Optional[str] = None


# ─── Annotation and pass results ─────────────────────────────────────────────


class PerformanceResult(BaseModel):
    """Collaborator output. All zeros is the placeholder for 'unavailable'."""

    pp: float = 0.0
    stars: float = 0.0
    bpm: float = 0.0
    ar: float = 0.0
    cs: float = 0.0
    od: float = 0.0
    hp: float = 0.0
    max_combo: int = 0


class HitAnalysis(BaseModel):
    """Consistency metrics derived from a replay."""

    unstable_rate: float = 0.0
    hit_errors: list[float] = Field(default_factory=list)
    key_ratio: float = 0.5
    key_counts: dict[str, int] = Field(default_factory=dict)


class ImportSummary(BaseModel):
    """What one import pass did. Returned instead of raising."""

    source: str
    added: int = 0
    skipped: int = 0
    filtered: int = 0
    beatmaps: int = 0
    error: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_tuple(self) -> tuple[int, int, Optional[str]]:
        return self.added, self.skipped, self.error
