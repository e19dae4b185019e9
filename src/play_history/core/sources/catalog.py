"""Stable client beatmap catalog (``osu!.db``) reader.

The entry layout changed over the client's lifetime, so several fields are
gated on the header's version number:

- before 20191106 each entry starts with its own byte size;
- before 20140609 difficulty values are single bytes and there are no
  per-mod star ratings;
- from 20250107 star ratings are stored as float32 instead of float64.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from ..errors import StructuralDecodeError
from ..models import CatalogEntry
from ..mods import DIFFICULTY_MODS, Mods
from .binary import BinaryStream
from .ledger import read_file_bytes

logger = logging.getLogger(__name__)

VERSION_FLOAT_DIFFICULTY = 20140609
VERSION_NO_ENTRY_SIZE = 20191106
VERSION_FLOAT_STARS = 20250107

RULESET_COUNT = 4
INT_MARKER = 0x08


class Catalog(BaseModel):
    """Hash-indexed catalog contents."""

    version: int = 0
    player: str = ""
    declared_count: int = 0
    entries: dict[str, CatalogEntry] = Field(default_factory=dict)

    def get(self, beatmap_hash: str) -> Optional[CatalogEntry]:
        return self.entries.get(beatmap_hash)

    def __len__(self) -> int:
        return len(self.entries)


def load_catalog(path: str | Path) -> tuple[Catalog, list[str]]:
    """Decode the catalog, keeping whatever was read before a structural failure.

    The catalog only adds display metadata to ledger scores, so a corrupt
    tail is reported as a warning instead of failing the import.
    """
    catalog = Catalog()
    stream = BinaryStream(read_file_bytes(path), source=Path(path).name)
    warnings: list[str] = []
    try:
        decode_catalog(stream, catalog)
    except StructuralDecodeError as exc:
        logger.warning("Catalog decode stopped early (%d entries kept): %s", len(catalog), exc)
        warnings.append(str(exc))
    return catalog, warnings


def decode_catalog(stream: BinaryStream, catalog: Catalog) -> Catalog:
    catalog.version = stream.read_int32()
    stream.read_int32()  # folder count
    stream.read_bool()  # account unlocked
    stream.read_int64()  # unlock date
    catalog.player = stream.read_string()
    catalog.declared_count = stream.read_int32()

    sized = catalog.version < VERSION_NO_ENTRY_SIZE
    for index in range(catalog.declared_count):
        if not sized:
            _store(catalog, _read_entry(stream, catalog.version), index)
            continue

        size = stream.read_int32()
        start = stream.offset
        end = start + size
        try:
            entry = _read_entry(stream, catalog.version)
        except StructuralDecodeError as exc:
            if size <= 0 or end > start + stream.remaining:
                raise
            logger.warning("Catalog entry %d unreadable, skipping to next: %s", index, exc)
            stream.seek(end)
            continue
        if size > 0 and stream.offset != end:
            logger.debug("Catalog entry %d size mismatch, resynchronizing", index)
            stream.seek(end)
        _store(catalog, entry, index)
    return catalog


def _store(catalog: Catalog, entry: Optional[CatalogEntry], index: int) -> None:
    if entry is None:
        logger.debug("Catalog entry %d has no hash, skipped", index)
        return
    catalog.entries[entry.hash] = entry


def _read_entry(stream: BinaryStream, version: int) -> Optional[CatalogEntry]:
    artist = stream.read_string()
    stream.read_string()  # artist unicode
    title = stream.read_string()
    stream.read_string()  # title unicode
    creator = stream.read_string()
    difficulty = stream.read_string()
    stream.read_string()  # audio file
    md5 = stream.read_string()
    file_name = stream.read_string()
    ranked_status = stream.read_byte()
    circles = stream.read_uint16()
    sliders = stream.read_uint16()
    spinners = stream.read_uint16()
    stream.read_int64()  # last modified

    if version >= VERSION_FLOAT_DIFFICULTY:
        ar, cs, hp, od = (stream.read_float32() for _ in range(4))
    else:
        ar, cs, hp, od = (float(stream.read_byte()) for _ in range(4))
    stream.read_float64()  # slider velocity

    stars: dict[int, float] = {}
    if version >= VERSION_FLOAT_DIFFICULTY:
        for ruleset in range(RULESET_COUNT):
            pairs = _read_star_pairs(stream, version)
            if ruleset == 0:
                stars = pairs

    drain_time = stream.read_int32()
    total_time = stream.read_int32()
    stream.read_int32()  # preview time
    timing_points = stream.read_int32()
    if timing_points < 0:
        raise StructuralDecodeError(stream.source, stream.offset, "negative timing point count")
    stream.skip(timing_points * 17)  # bpm double, offset double, inherited bool

    beatmap_id = stream.read_int32()
    set_id = stream.read_int32()
    stream.read_int32()  # thread id
    stream.skip(4)  # grades per ruleset
    stream.read_int16()  # local offset
    stream.read_float32()  # stack leniency
    mode = stream.read_byte()
    stream.read_string()  # source
    stream.read_string()  # tags
    stream.read_int16()  # online offset
    stream.read_string()  # title font
    stream.read_bool()  # unplayed
    stream.read_int64()  # last played
    stream.read_bool()  # osz2
    folder_name = stream.read_string()
    stream.read_int64()  # last checked
    stream.skip(5)  # ignore sound, skin, storyboard, video, visual override
    if version < VERSION_FLOAT_DIFFICULTY:
        stream.read_int16()
    stream.read_int32()
    stream.read_byte()  # mania scroll speed

    if not md5:
        return None
    return CatalogEntry(
        hash=md5,
        artist=artist,
        title=title,
        creator=creator,
        version=difficulty,
        file_name=file_name,
        folder_name=folder_name,
        ranked_status=ranked_status,
        circles=circles,
        sliders=sliders,
        spinners=spinners,
        ar=ar,
        cs=cs,
        hp=hp,
        od=od,
        star_ratings=stars,
        drain_time=drain_time,
        total_time=total_time,
        beatmap_id=beatmap_id,
        set_id=set_id,
        mode=mode,
    )


def _read_star_pairs(stream: BinaryStream, version: int) -> dict[int, float]:
    count = stream.read_int32()
    if count < 0:
        raise StructuralDecodeError(stream.source, stream.offset, "negative star rating count")
    pairs: dict[int, float] = {}
    for _ in range(count):
        marker = stream.read_byte()
        if marker != INT_MARKER:
            raise StructuralDecodeError(
                stream.source, stream.offset - 1, f"unexpected star rating marker 0x{marker:02x}"
            )
        mods = stream.read_int32()
        stream.read_byte()  # value type marker
        if version < VERSION_FLOAT_STARS:
            value = stream.read_float64()
        else:
            value = stream.read_float32()
        pairs[mods] = value
    return pairs


def lookup_stars(entry: Optional[CatalogEntry], mod_bits: int) -> float:
    """Star rating under the play's difficulty-changing mods.

    Nightcore falls back to the double-time entry, then everything falls
    back to the nomod entry.
    """
    if entry is None:
        return 0.0
    key = int(mod_bits) & int(DIFFICULTY_MODS)
    stars = entry.star_ratings.get(key, 0.0)
    if stars:
        return stars
    if key & Mods.NIGHTCORE:
        fallback = (key & ~int(Mods.NIGHTCORE)) | int(Mods.DOUBLETIME)
        stars = entry.star_ratings.get(fallback, 0.0)
    if not stars:
        stars = entry.star_ratings.get(0, 0.0)
    return stars
