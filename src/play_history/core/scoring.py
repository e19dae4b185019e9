"""Score arithmetic shared by the normalizer, annotator and analyzer.

Everything here is a pure function of its arguments: score-scale
conversion, accuracy and grades, clock rate, unstable rate, key balance and
the legacy maximum-score estimate used to sanity check ledger scores.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Mapping, Optional, Sequence

from .beatmap_file import BeatmapFile
from .mods import Mods

logger = logging.getLogger(__name__)

RANK_GRADES = ("D", "C", "B", "A", "S", "SH", "X", "XH")

# cumulative legacy score multipliers
MOD_SCORE_MULTIPLIERS = {
    "EZ": 0.5,
    "NF": 0.5,
    "HT": 0.3,
    "HR": 1.06,
    "DT": 1.12,
    "NC": 1.12,
    "HD": 1.06,
    "FL": 1.12,
    "SO": 0.9,
}

SCORE_V2_MAX = 1_000_000


def classic_score(total_objects: int, reported_score: int) -> int:
    """Convert a standardised (million-scale) score to the classic scale.

    Scores are returned unchanged when the object count is unknown.
    """
    if total_objects <= 0:
        return int(reported_score)
    return round(((total_objects ** 2 * 32.57 + 100000) * reported_score) / 1_000_000)


def accuracy(count300: int, count100: int, count50: int, misses: int) -> float:
    """Hit accuracy as a 0-1 ratio."""
    total = count300 + count100 + count50 + misses
    if total == 0:
        return 0.0
    return (300.0 * count300 + 100.0 * count100 + 50.0 * count50) / (300.0 * total)


def grade_from_rank(rank: int) -> str:
    """Map the dynamic store's rank code to a letter; out of range is a fail."""
    if 0 <= rank < len(RANK_GRADES):
        return RANK_GRADES[rank]
    return "F"


def grade_from_judgements(
    count300: int,
    count100: int,
    count50: int,
    misses: int,
    mods: Iterable[str] = (),
) -> str:
    """Derive a letter grade from judgement counts the way the stable client does."""
    total = count300 + count100 + count50 + misses
    if total == 0:
        return "D"

    silver = any(m in ("HD", "FL") for m in mods)
    ratio300 = count300 / total
    ratio50 = count50 / total

    if count300 == total:
        return "XH" if silver else "X"
    if ratio300 > 0.9 and ratio50 < 0.01 and misses == 0:
        return "SH" if silver else "S"
    if (ratio300 > 0.8 and misses == 0) or ratio300 > 0.9:
        return "A"
    if (ratio300 > 0.7 and misses == 0) or ratio300 > 0.8:
        return "B"
    if ratio300 > 0.6:
        return "C"
    return "D"


def clock_rate(mod_bits: int) -> float:
    if mod_bits & (Mods.NIGHTCORE | Mods.DOUBLETIME):
        return 1.5
    if mod_bits & Mods.HALFTIME:
        return 0.75
    return 1.0


def unstable_rate(offsets: Sequence[float]) -> float:
    """10 × the population standard deviation of hit timing offsets (ms)."""
    if not offsets:
        return 0.0
    mean = sum(offsets) / len(offsets)
    variance = sum((o - mean) ** 2 for o in offsets) / len(offsets)
    return math.sqrt(variance) * 10.0


def key_balance(counts: Mapping[str, int]) -> float:
    """Share of the most used key among the two most used keys.

    1.0 when only one key was used, 0.5 when nothing was pressed.
    """
    used = sorted((c for c in counts.values() if c > 0), reverse=True)
    if not used:
        return 0.5
    if len(used) == 1:
        return 1.0
    top1, top2 = used[0], used[1]
    return top1 / (top1 + top2)


def legacy_max_score(
    beatmap: BeatmapFile,
    mods: Sequence[str],
    rate: float = 1.0,
) -> int:
    """Estimate the best stable (ScoreV1) score achievable on a beatmap.

    ``rate`` is the clock rate of the play; drain time is measured in real
    seconds so the density bonus follows the played speed.
    """
    upper = [m.upper() for m in mods]
    if "SV2" in upper or "V2" in upper:
        return SCORE_V2_MAX
    if not beatmap.hit_objects:
        return 0

    hp, od, cs = beatmap.hp, beatmap.od, beatmap.cs
    if "HR" in upper:
        hp, od, cs = min(10.0, hp * 1.4), min(10.0, od * 1.4), min(10.0, cs * 1.3)
    elif "EZ" in upper:
        hp, od, cs = hp * 0.5, od * 0.5, cs * 0.5

    drain = max(1.0, beatmap.drain_seconds / (rate or 1.0))
    density = min(16.0, max(8.0, len(beatmap.hit_objects) / drain * 8.0))
    difficulty = round((hp + od + cs + density) / 38.0 * 5.0)

    multiplier = 1.0
    for mod in upper:
        multiplier *= MOD_SCORE_MULTIPLIERS.get(mod, 1.0)

    def judged(combo: int) -> int:
        return 300 + math.floor(300.0 * combo * difficulty * multiplier / 25.0)

    total = 0
    combo = 0
    for obj in beatmap.hit_objects:
        if obj.is_circle:
            total += judged(combo)
            combo += 1
        elif obj.is_slider:
            repeats = obj.slides - 1
            ticks = _slider_ticks(beatmap, obj.time, obj.pixel_length) * obj.slides
            total += 30 + 10 * ticks + 30 * repeats
            combo += 1 + ticks + repeats
            total += judged(combo)
            combo += 1
        elif obj.is_spinner:
            total += judged(combo)
            combo += 1
            # about one bonus spin per 100ms after the first few
            total += max(0, int((obj.end_time - obj.time) / 100) - 3) * 1000
    return total


def check_legacy_score(
    score: int,
    beatmap: Optional[BeatmapFile],
    mods: Sequence[str],
    rate: float,
) -> Optional[int]:
    """Return the estimate when ``score`` exceeds it, else None."""
    if beatmap is None:
        return None
    estimate = legacy_max_score(beatmap, mods, rate)
    if estimate and score > estimate:
        logger.warning(
            "Score %d exceeds legacy maximum estimate %d for %s", score, estimate, beatmap.path
        )
        return estimate
    return None


def _slider_ticks(beatmap: BeatmapFile, time: float, pixel_length: float) -> int:
    if pixel_length <= 0 or beatmap.slider_multiplier <= 0 or beatmap.slider_tick_rate <= 0:
        return 0
    _, velocity = beatmap.timing_at(time)
    per_tick = 100.0 * beatmap.slider_multiplier * velocity / beatmap.slider_tick_rate
    if per_tick <= 0:
        return 0
    return max(0, math.ceil(pixel_length / per_tick - 0.01) - 1)
