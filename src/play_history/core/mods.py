"""Gameplay modifier representations.

The ledger stores mods as a bitmask, the dynamic store as a JSON list of
``{"acronym": ...}`` objects. Both resolve to one canonical, ordered tuple of
acronyms; the bitmask form is what the performance collaborator consumes.
"""

from __future__ import annotations

import json
import logging
from enum import IntFlag
from typing import Iterable

logger = logging.getLogger(__name__)


class Mods(IntFlag):
    NOMOD = 0
    NOFAIL = 1 << 0
    EASY = 1 << 1
    TOUCHSCREEN = 1 << 2
    HIDDEN = 1 << 3
    HARDROCK = 1 << 4
    SUDDENDEATH = 1 << 5
    DOUBLETIME = 1 << 6
    RELAX = 1 << 7
    HALFTIME = 1 << 8
    NIGHTCORE = 1 << 9
    FLASHLIGHT = 1 << 10
    AUTOPLAY = 1 << 11
    SPUNOUT = 1 << 12
    AUTOPILOT = 1 << 13
    PERFECT = 1 << 14
    # the collaborator reads bit 24 as "classic scoring"
    CLASSIC = 1 << 24
    MIRROR = 1 << 30


# canonical display order, which is also bit order
ACRONYM_BITS: dict[str, int] = {
    "NF": Mods.NOFAIL,
    "EZ": Mods.EASY,
    "TD": Mods.TOUCHSCREEN,
    "HD": Mods.HIDDEN,
    "HR": Mods.HARDROCK,
    "SD": Mods.SUDDENDEATH,
    "DT": Mods.DOUBLETIME,
    "RX": Mods.RELAX,
    "HT": Mods.HALFTIME,
    "NC": Mods.NIGHTCORE | Mods.DOUBLETIME,
    "FL": Mods.FLASHLIGHT,
    "AT": Mods.AUTOPLAY,
    "SO": Mods.SPUNOUT,
    "AP": Mods.AUTOPILOT,
    "PF": Mods.PERFECT | Mods.SUDDENDEATH,
    "CL": Mods.CLASSIC,
    "MR": Mods.MIRROR,
    # daycore is a halftime variant
    "DC": Mods.HALFTIME,
}

_ORDER = {acronym: index for index, acronym in enumerate(ACRONYM_BITS)}

# mods that change star rating in the catalog's per-mod table
DIFFICULTY_MODS = (
    Mods.EASY | Mods.HARDROCK | Mods.DOUBLETIME | Mods.HALFTIME | Mods.NIGHTCORE | Mods.FLASHLIGHT
)

_BITMASK_ACRONYMS = [
    (Mods.NOFAIL, "NF"),
    (Mods.EASY, "EZ"),
    (Mods.TOUCHSCREEN, "TD"),
    (Mods.HIDDEN, "HD"),
    (Mods.HARDROCK, "HR"),
    (Mods.SUDDENDEATH, "SD"),
    (Mods.DOUBLETIME, "DT"),
    (Mods.RELAX, "RX"),
    (Mods.HALFTIME, "HT"),
    (Mods.NIGHTCORE, "NC"),
    (Mods.FLASHLIGHT, "FL"),
    (Mods.AUTOPLAY, "AT"),
    (Mods.SPUNOUT, "SO"),
    (Mods.AUTOPILOT, "AP"),
    (Mods.PERFECT, "PF"),
    (Mods.CLASSIC, "CL"),
    (Mods.MIRROR, "MR"),
]


def canonical_mods(acronyms: Iterable[str]) -> tuple[str, ...]:
    """Upper-case, de-duplicate and order a set of acronyms.

    NC absorbs DT and PF absorbs SD. Acronyms without a known bit keep their
    place after the known ones, alphabetically.
    """
    seen = {a.strip().upper() for a in acronyms if a and a.strip()}
    if "NC" in seen:
        seen.discard("DT")
    if "PF" in seen:
        seen.discard("SD")
    known = sorted((a for a in seen if a in _ORDER), key=_ORDER.__getitem__)
    unknown = sorted(a for a in seen if a not in _ORDER)
    return tuple(known + unknown)


def mods_from_bitmask(mask: int) -> list[str]:
    """Decode a ledger bitmask into acronyms (not yet canonical)."""
    return [acronym for bit, acronym in _BITMASK_ACRONYMS if mask & bit]


def mods_to_bitmask(acronyms: Iterable[str]) -> int:
    bits = 0
    for acronym in acronyms:
        bits |= ACRONYM_BITS.get(acronym.strip().upper(), 0)
    return bits


def parse_mods_json(text: str | None) -> list[str]:
    """Extract acronyms from the dynamic store's structured mods text."""
    if not text:
        return []
    try:
        entries = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Unparseable mods text: %r", text)
        return []
    if not isinstance(entries, list):
        return []

    acronyms = []
    for entry in entries:
        if isinstance(entry, dict):
            acronym = entry.get("acronym") or entry.get("Acronym")
        else:
            acronym = entry
        if isinstance(acronym, str) and acronym:
            acronyms.append(acronym)
    return acronyms


def format_mods(mods: Iterable[str]) -> str:
    joined = ",".join(mods)
    return joined or "NM"


def parse_mods_text(text: str | None) -> tuple[str, ...]:
    """Inverse of format_mods, for rows read back from the store."""
    if not text or text == "NM":
        return ()
    return canonical_mods(text.split(","))
