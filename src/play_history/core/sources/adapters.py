"""Runtime field lookup for the dynamic-schema store.

The store has no compiled schema, so every field is looked up by name with
an optional alternate name and a ``None`` default. This module is the only
place that knows those names; everything downstream works with the typed
DynamicScore and DynamicBeatmap records.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from ..errors import PerRecordDecodeError
from ..models import DynamicBeatmap, DynamicScore, ensure_utc

logger = logging.getLogger(__name__)

REPLAY_FILE_NAMES = ("replay",)


def field(obj: Optional[Mapping[str, Any]], name: str, alternate: Optional[str] = None) -> Any:
    """Look a field up by name, then by its alternate name. Missing is None."""
    if obj is None:
        return None
    value = obj.get(name)
    if value is None and alternate is not None:
        value = obj.get(alternate)
    return value


def as_list(value: Any) -> list:
    if value is None or isinstance(value, (str, bytes, Mapping)):
        return []
    return list(value)


def as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def as_json_text(value: Any, empty: str) -> str:
    if value is None:
        return empty
    if isinstance(value, str):
        return value or empty
    return json.dumps(value)


def blob_path(files_root: str | Path, file_hash: str) -> Path:
    """Content-addressed location of a stored file: ``root/h[0]/h[0:2]/h``."""
    return Path(files_root) / file_hash[:1] / file_hash[:2] / file_hash


class FileAdapter:
    """A named file attachment (``Filename`` plus ``File.Hash``)."""

    def __init__(self, obj: Mapping[str, Any]):
        self._obj = obj

    @property
    def filename(self) -> str:
        return field(self._obj, "Filename") or ""

    @property
    def hash(self) -> str:
        return field(field(self._obj, "File"), "Hash") or ""


class MetadataAdapter:
    def __init__(self, obj: Optional[Mapping[str, Any]]):
        self._obj = obj

    @property
    def title(self) -> Optional[str]:
        return field(self._obj, "Title")

    @property
    def artist(self) -> Optional[str]:
        return field(self._obj, "Artist")

    @property
    def author(self) -> Optional[str]:
        return field(field(self._obj, "Author"), "Username")

    @property
    def background_file(self) -> Optional[str]:
        return field(self._obj, "BackgroundFile")


class SetAdapter:
    """A beatmap set: its difficulties and shared file attachments."""

    def __init__(self, obj: Optional[Mapping[str, Any]]):
        self._obj = obj

    @property
    def beatmaps(self) -> list[Mapping[str, Any]]:
        return as_list(field(self._obj, "Beatmaps"))

    @property
    def files(self) -> list[FileAdapter]:
        return [FileAdapter(f) for f in as_list(field(self._obj, "Files")) if f is not None]

    def file_with_hash(self, file_hash: str) -> Optional[FileAdapter]:
        if not file_hash:
            return None
        return next((f for f in self.files if f.hash == file_hash), None)

    def file_named(self, filename: str) -> Optional[FileAdapter]:
        if not filename:
            return None
        wanted = filename.lower()
        return next((f for f in self.files if f.filename.lower() == wanted), None)


class BeatmapAdapter:
    """One difficulty, as stored in ``BeatmapInfo`` or a set's ``Beatmaps``."""

    def __init__(self, obj: Mapping[str, Any], parent_set: Optional[Mapping[str, Any]] = None):
        self._obj = obj
        self._parent_set = parent_set

    @property
    def md5(self) -> str:
        return field(self._obj, "MD5Hash") or ""

    @property
    def sha(self) -> str:
        return field(self._obj, "Hash") or ""

    @property
    def hash(self) -> str:
        return self.md5 or self.sha

    @property
    def ruleset(self) -> Optional[str]:
        return field(field(self._obj, "Ruleset"), "ShortName")

    @property
    def metadata(self) -> MetadataAdapter:
        return MetadataAdapter(field(self._obj, "Metadata"))

    @property
    def beatmap_set(self) -> SetAdapter:
        return SetAdapter(field(self._obj, "BeatmapSet") or self._parent_set)

    @property
    def status(self) -> str:
        status_int = field(self._obj, "StatusInt")
        if status_int is not None:
            return str(as_int(status_int))
        status = field(self._obj, "Status")
        return str(status) if status is not None else "Unknown"

    def to_record(self, files_root: str | Path) -> DynamicBeatmap:
        identifying = self.hash
        if not identifying:
            raise PerRecordDecodeError("beatmap", "no MD5Hash or Hash")

        meta = self.metadata
        difficulty = field(self._obj, "Difficulty")
        beatmap_set = self.beatmap_set

        osu_file_path = None
        osu_file = beatmap_set.file_with_hash(self.sha)
        if osu_file is not None:
            candidate = blob_path(files_root, osu_file.hash)
            if candidate.is_file():
                osu_file_path = str(candidate)

        background = beatmap_set.file_named(meta.background_file or "")

        return DynamicBeatmap(
            hash=identifying,
            sha_hash=self.sha,
            ruleset=self.ruleset,
            title=meta.title or "Unknown",
            artist=meta.artist or "Unknown",
            mapper=meta.author or "Unknown",
            version=field(self._obj, "DifficultyName") or "",
            stars=as_float(field(self._obj, "StarRating")),
            length_ms=as_float(field(self._obj, "Length")),
            bpm=as_float(field(self._obj, "BPM")),
            status=self.status,
            last_played=as_datetime(field(self._obj, "LastPlayed")),
            cs=as_float(field(difficulty, "CircleSize")),
            ar=as_float(field(difficulty, "ApproachRate")),
            od=as_float(field(difficulty, "OverallDifficulty")),
            hp=as_float(field(difficulty, "DrainRate")),
            osu_file_path=osu_file_path,
            background_hash=background.hash if background and background.hash else None,
        )


class ScoreAdapter:
    def __init__(self, obj: Mapping[str, Any]):
        self._obj = obj

    @property
    def username(self) -> str:
        return field(field(self._obj, "User"), "Username") or "Guest"

    @property
    def online_id(self) -> int:
        return as_int(field(self._obj, "OnlineID"), -1)

    @property
    def ruleset(self) -> Optional[str]:
        return field(field(self._obj, "Ruleset"), "ShortName")

    @property
    def beatmap(self) -> Optional[Mapping[str, Any]]:
        return field(self._obj, "BeatmapInfo")

    def hit_offsets(self) -> list[float]:
        offsets = []
        for event in as_list(field(self._obj, "HitEvents")):
            offset = field(event, "TimeOffset") if isinstance(event, Mapping) else None
            if offset is not None:
                offsets.append(float(offset))
        return offsets

    def replay_hash(self) -> str:
        """The first ``.osr``/``replay`` attachment, else the first file."""
        first = ""
        for attachment in as_list(field(self._obj, "Files")):
            if attachment is None:
                continue
            f = FileAdapter(attachment)
            if not first:
                first = f.hash
            name = f.filename.lower()
            if name.endswith(".osr") or name in REPLAY_FILE_NAMES:
                return f.hash
        return first

    def to_record(self) -> DynamicScore:
        date = as_datetime(field(self._obj, "Date"))
        if date is None:
            raise PerRecordDecodeError("score", "missing or unreadable Date")

        beatmap = self.beatmap
        meta = MetadataAdapter(field(beatmap, "Metadata"))
        pp = field(self._obj, "PP")
        return DynamicScore(
            username=self.username,
            online_id=self.online_id,
            ruleset=self.ruleset,
            accuracy=as_float(field(self._obj, "Accuracy")),
            max_combo=as_int(field(self._obj, "MaxCombo")),
            rank=as_int(field(self._obj, "Rank")),
            date=date,
            pp=as_float(pp) if pp is not None else None,
            total_score=as_int(field(self._obj, "TotalScore")),
            mods_json=as_json_text(field(self._obj, "Mods", "APIMods"), "[]"),
            statistics_json=as_json_text(field(self._obj, "Statistics", "StatisticsJson"), "{}"),
            beatmap_hash=field(beatmap, "MD5Hash", "Hash") or "",
            replay_hash=self.replay_hash(),
            hit_offsets=self.hit_offsets(),
            beatmap_title=meta.title or "Unknown",
            beatmap_artist=meta.artist or "Unknown",
            beatmap_version=field(beatmap, "DifficultyName") or "",
            beatmap_length=as_float(field(beatmap, "Length")),
            star_rating=as_float(field(beatmap, "StarRating")),
        )


def local_username_candidates(scores: Iterable[ScoreAdapter]) -> dict[str, int]:
    """Tally user names among scores that were never submitted online."""
    counts: dict[str, int] = {}
    for score in scores:
        if score.online_id > 0:
            continue
        name = score.username
        if not name or name == "Guest":
            continue
        counts[name] = counts.get(name, 0) + 1
    return counts
