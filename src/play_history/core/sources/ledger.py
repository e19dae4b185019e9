"""Stable client score ledger (``scores.db``) reader.

Layout: int32 format version, int32 group count, then per beatmap group a
hash string, an int32 score count and that many fixed-order score records.
Only primary-ruleset, positive-score records whose player name is one of the
caller's aliases are kept; everything else is filtered silently.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from ..errors import PerRecordDecodeError, SourceNotFound
from ..models import StableScore, ensure_utc
from ..outcomes import OutcomeKind, RecordOutcome
from .binary import BinaryStream, ticks_to_datetime

logger = logging.getLogger(__name__)

PRIMARY_RULESET = 0
# names the stable client writes for offline or anonymous plays
ALWAYS_LOCAL_NAMES = frozenset({"", "guest"})
REPLAY_LINK_WINDOW_SECONDS = 2 * 3600


class LedgerContents(BaseModel):
    """Everything one pass over the ledger produced."""

    version: int = 0
    outcomes: list[RecordOutcome] = Field(default_factory=list)

    @property
    def scores(self) -> list[StableScore]:
        return [o.value for o in self.outcomes if o.kind is OutcomeKind.ACCEPTED]


class AliasMatcher:
    """Case-insensitive exact player-name matching.

    Empty, whitespace-only and ``Guest`` names always match. With no
    configured aliases every name matches.
    """

    def __init__(self, aliases: Optional[Iterable[str]] = None):
        names = [a.strip().lower() for a in aliases or () if a and a.strip()]
        self.open = not names
        self._names = frozenset(names) | ALWAYS_LOCAL_NAMES

    def __call__(self, player_name: str) -> bool:
        if self.open:
            return True
        return player_name.strip().lower() in self._names


def read_file_bytes(path: str | Path) -> bytes:
    source = Path(path)
    if not source.is_file():
        raise SourceNotFound(str(source))
    try:
        return source.read_bytes()
    except OSError as exc:
        raise SourceNotFound(str(source), str(exc)) from exc


def read_ledger(path: str | Path, aliases: Optional[Iterable[str]] = None) -> LedgerContents:
    """Decode the whole ledger.

    Raises SourceNotFound when the file is missing and StructuralDecodeError
    when the stream ends early; per-record problems become failed outcomes.
    """
    stream = BinaryStream(read_file_bytes(path), source=Path(path).name)
    return decode_ledger(stream, AliasMatcher(aliases))


def decode_ledger(stream: BinaryStream, matches: AliasMatcher) -> LedgerContents:
    contents = LedgerContents(version=stream.read_int32())
    group_count = stream.read_int32()
    logger.debug("Ledger v%d with %d beatmap groups", contents.version, group_count)

    for _ in range(group_count):
        group_hash = stream.read_string()
        score_count = stream.read_int32()
        for index in range(score_count):
            outcome = _read_score(stream, matches)
            if outcome.kind is OutcomeKind.FAILED:
                logger.warning(
                    "Skipping score %d of beatmap %s: %s", index, group_hash, outcome.reason
                )
            contents.outcomes.append(outcome)
    return contents


def _read_score(stream: BinaryStream, matches: AliasMatcher) -> RecordOutcome:
    # read every field first so a bad value never desynchronizes the stream
    ruleset = stream.read_byte()
    version = stream.read_int32()
    beatmap_hash = stream.read_string()
    player_name = stream.read_string()
    replay_hash = stream.read_string()
    count300 = stream.read_uint16()
    count100 = stream.read_uint16()
    count50 = stream.read_uint16()
    count_geki = stream.read_uint16()
    count_katu = stream.read_uint16()
    misses = stream.read_uint16()
    score = stream.read_int32()
    max_combo = stream.read_uint16()
    perfect = stream.read_bool()
    mods = stream.read_int32()
    stream.read_string()  # life bar graph
    raw_timestamp = stream.read_int64()
    stream.skip(4)  # 0xFFFFFFFF sentinel
    online_id = stream.read_int64()

    if ruleset != PRIMARY_RULESET:
        return RecordOutcome.filtered("ruleset")
    if score <= 0:
        return RecordOutcome.filtered("score")
    if not matches(player_name):
        return RecordOutcome.filtered("player")

    try:
        timestamp = ticks_to_datetime(raw_timestamp)
    except PerRecordDecodeError as exc:
        return RecordOutcome.failed(str(exc))

    return RecordOutcome.accepted(StableScore(
        ruleset=ruleset,
        version=version,
        beatmap_hash=beatmap_hash,
        player_name=player_name,
        replay_hash=replay_hash,
        count300=count300,
        count100=count100,
        count50=count50,
        count_geki=count_geki,
        count_katu=count_katu,
        misses=misses,
        score=score,
        max_combo=max_combo,
        perfect=perfect,
        mods=mods,
        timestamp=timestamp,
        online_id=online_id,
    ))


def link_replay(
    stable_root: str | Path,
    replay_hash: str,
    beatmap_hash: str,
    played_at: datetime,
) -> str:
    """Find the stable replay file for a score, or return ``""``.

    The client stores replays as ``Data/r/<replay hash>.osr``. When that file
    is gone, a replay named after the beatmap hash whose modification time
    is within two hours of the play is used instead.
    """
    replay_dir = Path(stable_root) / "Data" / "r"
    if replay_hash:
        candidate = replay_dir / f"{replay_hash}.osr"
        if candidate.is_file():
            return str(candidate)
    if not beatmap_hash or not replay_dir.is_dir():
        return ""

    played = ensure_utc(played_at).timestamp()
    best: Optional[tuple[float, Path]] = None
    for candidate in replay_dir.glob(f"{beatmap_hash}*.osr"):
        try:
            distance = abs(candidate.stat().st_mtime - played)
        except OSError:
            continue
        if best is None or distance < best[0]:
            best = (distance, candidate)
    if best is not None and best[0] < REPLAY_LINK_WINDOW_SECONDS:
        return str(best[1])
    return ""
