"""Minimal .osu beatmap file parser.

Reads the sections the analyzers need: metadata, difficulty, break periods,
the background image, timing points and hit objects.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import NamedTuple, Optional

from pydantic import BaseModel, Field

from .errors import PerRecordDecodeError

logger = logging.getLogger(__name__)

BACKGROUND_RE = re.compile(r'0,0,"?([^",\r\n]+\.(?:jpg|jpeg|png))"?', re.IGNORECASE)
SECTION_RE = re.compile(r"^\[(\w+)\]\s*$")

CIRCLE = 1 << 0
SLIDER = 1 << 1
SPINNER = 1 << 3


class HitObject(NamedTuple):
    time: float
    x: float
    y: float
    kind: int
    end_time: float
    slides: int = 1
    pixel_length: float = 0.0

    @property
    def is_circle(self) -> bool:
        return bool(self.kind & CIRCLE)

    @property
    def is_slider(self) -> bool:
        return bool(self.kind & SLIDER)

    @property
    def is_spinner(self) -> bool:
        return bool(self.kind & SPINNER)


class TimingPoint(NamedTuple):
    offset: float
    beat_length: float
    uninherited: bool


class BeatmapFile(BaseModel):
    """The parsed content of one .osu file."""

    path: str = ""
    mode: int = 0
    title: str = ""
    artist: str = ""
    creator: str = ""
    version: str = ""
    hp: float = 5.0
    cs: float = 5.0
    od: float = 5.0
    ar: Optional[float] = None
    slider_multiplier: float = 1.4
    slider_tick_rate: float = 1.0
    background: Optional[str] = None
    breaks: list[tuple[float, float]] = Field(default_factory=list)
    timing_points: list[TimingPoint] = Field(default_factory=list)
    hit_objects: list[HitObject] = Field(default_factory=list)

    @property
    def approach_rate(self) -> float:
        # files older than v8 have no ApproachRate and reuse OD
        return self.ar if self.ar is not None else self.od

    @property
    def circles(self) -> int:
        return sum(1 for h in self.hit_objects if h.is_circle)

    @property
    def sliders(self) -> int:
        return sum(1 for h in self.hit_objects if h.is_slider)

    @property
    def spinners(self) -> int:
        return sum(1 for h in self.hit_objects if h.is_spinner)

    @property
    def bpm(self) -> float:
        for point in self.timing_points:
            if point.uninherited and point.beat_length > 0:
                return 60000.0 / point.beat_length
        return 0.0

    @property
    def length_ms(self) -> float:
        if not self.hit_objects:
            return 0.0
        return max(h.end_time for h in self.hit_objects) - self.hit_objects[0].time

    @property
    def drain_seconds(self) -> float:
        """Playable seconds between first and last object, minus breaks."""
        if not self.hit_objects:
            return 1.0
        first = self.hit_objects[0].time
        last = self.hit_objects[-1].time
        break_time = sum(end - start for start, end in self.breaks)
        return max(1.0, (last - first - break_time) / 1000.0)

    def timing_at(self, time: float) -> tuple[float, float]:
        """Return (beat length, slider velocity multiplier) active at ``time``."""
        beat_length = 500.0
        velocity = 1.0
        for point in self.timing_points:
            if point.offset > time + 1:
                break
            if point.uninherited:
                beat_length = point.beat_length
                velocity = 1.0
            elif point.beat_length < 0:
                velocity = min(10.0, max(0.1, -100.0 / point.beat_length))
        return beat_length, velocity

    def hit_window_50(self, od: Optional[float] = None) -> float:
        """Half-width in ms of the window that still scores a 50."""
        return 200.0 - 10.0 * (self.od if od is None else od)


def find_background(text: str) -> Optional[str]:
    """Return the background image file name from the [Events] section."""
    in_events = False
    for raw in text.splitlines():
        line = raw.strip()
        header = SECTION_RE.match(line)
        if header:
            in_events = header.group(1) == "Events"
            continue
        if in_events and line.startswith("0,0,"):
            match = BACKGROUND_RE.match(line)
            if match:
                return match.group(1)
    return None


def parse_beatmap_text(text: str, path: str = "") -> BeatmapFile:
    section = ""
    fields: dict[str, str] = {}
    beatmap = BeatmapFile(path=path)

    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("//"):
            continue
        header = SECTION_RE.match(line)
        if header:
            section = header.group(1)
            continue

        if section in ("General", "Metadata", "Difficulty"):
            key, sep, value = line.partition(":")
            if sep:
                fields[key.strip()] = value.strip()
        elif section == "Events":
            if line.startswith("2,") or line.startswith("Break,"):
                parts = line.split(",")
                try:
                    beatmap.breaks.append((float(parts[1]), float(parts[2])))
                except (IndexError, ValueError):
                    logger.debug("Ignoring malformed break at line %d of %s", number, path)
        elif section == "TimingPoints":
            parts = line.split(",")
            try:
                uninherited = parts[6].strip() != "0" if len(parts) > 6 else True
                beatmap.timing_points.append(
                    TimingPoint(float(parts[0]), float(parts[1]), uninherited)
                )
            except (IndexError, ValueError):
                logger.debug("Ignoring malformed timing point at line %d of %s", number, path)
        elif section == "HitObjects":
            beatmap.hit_objects.append(_parse_hit_object(line, number, path))

    beatmap.background = find_background(text)
    beatmap.mode = _int(fields.get("Mode"), 0)
    beatmap.title = fields.get("Title", "")
    beatmap.artist = fields.get("Artist", "")
    beatmap.creator = fields.get("Creator", "")
    beatmap.version = fields.get("Version", "")
    beatmap.hp = _float(fields.get("HPDrainRate"), 5.0)
    beatmap.cs = _float(fields.get("CircleSize"), 5.0)
    beatmap.od = _float(fields.get("OverallDifficulty"), 5.0)
    if "ApproachRate" in fields:
        beatmap.ar = _float(fields["ApproachRate"], beatmap.od)
    beatmap.slider_multiplier = _float(fields.get("SliderMultiplier"), 1.4)
    beatmap.slider_tick_rate = _float(fields.get("SliderTickRate"), 1.0)
    beatmap.timing_points.sort(key=lambda p: p.offset)
    return beatmap


def parse_beatmap_file(path: str | Path) -> BeatmapFile:
    """Read and parse a .osu file. Raises OSError when the file is unreadable."""
    text = Path(path).read_text(encoding="utf-8-sig", errors="replace")
    return parse_beatmap_text(text, str(path))


def _parse_hit_object(line: str, number: int, path: str) -> HitObject:
    parts = line.split(",")
    try:
        x, y, time, kind = float(parts[0]), float(parts[1]), float(parts[2]), int(parts[3])
    except (IndexError, ValueError) as exc:
        raise PerRecordDecodeError(f"hit object at line {number} of {path}", str(exc)) from exc

    end_time = time
    slides = 1
    pixel_length = 0.0
    if kind & SPINNER and len(parts) > 5:
        end_time = _float(parts[5], time)
    elif kind & SLIDER and len(parts) > 7:
        slides = max(1, _int(parts[6], 1))
        pixel_length = _float(parts[7], 0.0)
    return HitObject(time, x, y, kind, end_time, slides, pixel_length)


def _float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


def _int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default
