"""Replay (.osr) decoding and hit-timing analysis.

A replay shares the ledger's header layout and string protocol, followed by
an LZMA stream of ``w|x|y|keys`` frames where ``w`` is the time since the
previous frame. Key-down transitions are matched against the beatmap's hit
objects to get per-object timing offsets.
"""

from __future__ import annotations

import logging
import lzma
from datetime import datetime
from pathlib import Path
from typing import NamedTuple, Optional

from pydantic import BaseModel, Field

from .beatmap_file import BeatmapFile, parse_beatmap_file
from .errors import PerRecordDecodeError, PlayHistoryError
from .models import HitAnalysis
from .mods import Mods
from .scoring import key_balance, unstable_rate
from .sources.binary import BinaryStream, ticks_to_datetime

logger = logging.getLogger(__name__)

SEED_FRAME = -12345

M1 = 1 << 0
M2 = 1 << 1
K1 = 1 << 2
K2 = 1 << 3
# per press, the first set bit in this order names the key
KEY_PRIORITY = (("K1", K1), ("K2", K2), ("M1", M1), ("M2", M2))
KEY_MASK = M1 | M2 | K1 | K2


class ReplayFrame(NamedTuple):
    time: float
    x: float
    y: float
    keys: int


class KeyPress(NamedTuple):
    time: float
    key: str


class Replay(BaseModel):
    mode: int = 0
    version: int = 0
    beatmap_hash: str = ""
    player: str = ""
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
    timestamp: Optional[datetime] = None
    online_id: int = 0
    frames: list[ReplayFrame] = Field(default_factory=list)


def decode_frames(text: str) -> list[ReplayFrame]:
    frames = []
    elapsed = 0.0
    for chunk in text.split(","):
        parts = chunk.split("|")
        if len(parts) < 4:
            continue
        try:
            delta = float(parts[0])
            x, y, keys = float(parts[1]), float(parts[2]), int(float(parts[3]))
            seed = int(delta) == SEED_FRAME
        except (ValueError, OverflowError) as exc:
            raise PerRecordDecodeError("replay frame", str(exc)) from exc
        if seed:
            continue
        elapsed += delta
        frames.append(ReplayFrame(elapsed, x, y, keys))
    return frames


def decode_replay(data: bytes, source: str = "replay") -> Replay:
    stream = BinaryStream(data, source=source)
    replay = Replay(
        mode=stream.read_byte(),
        version=stream.read_int32(),
        beatmap_hash=stream.read_string(),
        player=stream.read_string(),
        replay_hash=stream.read_string(),
        count300=stream.read_uint16(),
        count100=stream.read_uint16(),
        count50=stream.read_uint16(),
        count_geki=stream.read_uint16(),
        count_katu=stream.read_uint16(),
        misses=stream.read_uint16(),
        score=stream.read_int32(),
        max_combo=stream.read_uint16(),
        perfect=stream.read_bool(),
        mods=stream.read_int32(),
    )
    stream.read_string()  # life bar graph
    raw_timestamp = stream.read_int64()
    compressed = stream.read_bytes(stream.read_int32())
    if stream.remaining >= 8:
        replay.online_id = stream.read_int64()

    try:
        replay.timestamp = ticks_to_datetime(raw_timestamp)
    except PerRecordDecodeError:
        logger.debug("Replay %s has an unreadable timestamp", source)

    if compressed:
        try:
            text = lzma.decompress(compressed, format=lzma.FORMAT_AUTO).decode("ascii", "replace")
        except lzma.LZMAError as exc:
            raise PerRecordDecodeError(f"frames of {source}", str(exc)) from exc
        replay.frames = decode_frames(text)
    return replay


def read_replay(path: str | Path) -> Replay:
    return decode_replay(Path(path).read_bytes(), source=Path(path).name)


def key_presses(frames: list[ReplayFrame]) -> list[KeyPress]:
    presses = []
    held = 0
    for frame in frames:
        keys = frame.keys & KEY_MASK
        pressed = keys & ~held
        if pressed:
            for name, bit in KEY_PRIORITY:
                if pressed & bit:
                    presses.append(KeyPress(frame.time, name))
                    break
        held = keys
    return presses


def effective_od(beatmap: BeatmapFile, mods: int) -> float:
    od = beatmap.od
    if mods & Mods.HARDROCK:
        od = min(10.0, od * 1.4)
    elif mods & Mods.EASY:
        od *= 0.5
    return od


def match_hits(
    beatmap: BeatmapFile, presses: list[KeyPress], mods: int = 0
) -> list[tuple[float, str]]:
    """Pair each circle or slider head with the first press in its 50 window."""
    window = beatmap.hit_window_50(effective_od(beatmap, mods))
    objects = [h for h in beatmap.hit_objects if not h.is_spinner]
    hits = []
    index = 0
    for obj in objects:
        while index < len(presses) and presses[index].time < obj.time - window:
            index += 1
        if index < len(presses) and presses[index].time <= obj.time + window:
            press = presses[index]
            hits.append((press.time - obj.time, press.key))
            index += 1
    return hits


def analyze(beatmap: BeatmapFile, replay: Replay) -> HitAnalysis:
    presses = key_presses(replay.frames)
    hits = match_hits(beatmap, presses, replay.mods)

    counts = {name: 0 for name, _ in KEY_PRIORITY}
    # without matched hits, fall back to every key-down in the replay
    for key in (key for _, key in hits) if hits else (p.key for p in presses):
        counts[key] += 1

    offsets = [offset for offset, _ in hits]
    return HitAnalysis(
        unstable_rate=unstable_rate(offsets),
        hit_errors=offsets,
        key_ratio=key_balance(counts),
        key_counts=counts,
    )


class ReplayHitAnalyzer:
    """Analyzes a beatmap and replay pair, degrading to defaults on failure."""

    def analyze(self, beatmap_path: str | Path, replay_path: str | Path) -> HitAnalysis:
        try:
            beatmap = parse_beatmap_file(beatmap_path)
            replay = read_replay(replay_path)
            result = analyze(beatmap, replay)
        except (OSError, PlayHistoryError, ValueError, ArithmeticError) as exc:
            logger.warning("Replay analysis failed for %s: %s", replay_path, exc)
            return HitAnalysis()
        logger.debug(
            "Analysis of %s: UR=%.2f key ratio=%.3f",
            replay_path, result.unstable_rate, result.key_ratio,
        )
        return result
