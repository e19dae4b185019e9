"""Shared fixtures: builders for the clients' binary files and fake collaborators."""

import lzma
import struct
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import pytest

from play_history.core.errors import CollaboratorUnavailable
from play_history.core.models import PerformanceResult
from play_history.core.sources.binary import encode_string
from play_history.store import Store

PLAYED_AT = datetime(2024, 3, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)
MAP_HASH = "a" * 32
REPLAY_HASH = "b" * 32
KIND_UTC = 1 << 62


def ticks(moment: datetime, kind: int = KIND_UTC) -> int:
    """.NET DateTime.ToBinary for an aware datetime."""
    delta = moment - datetime(1, 1, 1, tzinfo=timezone.utc)
    raw = (delta.days * 86400 + delta.seconds) * 10_000_000 + delta.microseconds * 10
    return raw | kind


# ─── scores.db ───────────────────────────────────────────────────────────────


def ledger_score(
    beatmap_hash=MAP_HASH,
    player="Alice",
    score=500_000,
    ruleset=0,
    mods=0,
    played_at=PLAYED_AT,
    replay_hash=REPLAY_HASH,
    counts=(300, 10, 2, 40, 5, 1),
    max_combo=400,
    raw_timestamp=None,
) -> bytes:
    timestamp = ticks(played_at) if raw_timestamp is None else raw_timestamp
    out = bytearray()
    out += struct.pack("<B", ruleset)
    out += struct.pack("<i", 20240101)
    out += encode_string(beatmap_hash)
    out += encode_string(player)
    out += encode_string(replay_hash)
    out += struct.pack("<6H", *counts)
    out += struct.pack("<i", score)
    out += struct.pack("<H", max_combo)
    out += struct.pack("<?", False)
    out += struct.pack("<i", mods)
    out += encode_string("")
    out += struct.pack("<Q", timestamp & 0xFFFF_FFFF_FFFF_FFFF)
    out += b"\xff\xff\xff\xff"
    out += struct.pack("<q", 0)
    return bytes(out)


def build_ledger(groups: dict, version: int = 20240101) -> bytes:
    out = bytearray(struct.pack("<ii", version, len(groups)))
    for beatmap_hash, scores in groups.items():
        out += encode_string(beatmap_hash)
        out += struct.pack("<i", len(scores))
        for score in scores:
            out += score
    return bytes(out)


# ─── osu!.db ─────────────────────────────────────────────────────────────────


def catalog_entry(
    version: int,
    md5=MAP_HASH,
    artist="Camellia",
    title="Exit This Earth's Atomosphere",
    creator="Mapper",
    difficulty="Insane",
    file_name="map.osu",
    folder_name="123 Camellia - Exit",
    stars=None,
    ranked_status=4,
    counts=(3, 1, 1),
) -> bytes:
    stars = stars if stars is not None else {0: 5.25, 64: 7.5}
    out = bytearray()
    for text in (artist, artist, title, title, creator, difficulty, "audio.mp3", md5, file_name):
        out += encode_string(text)
    out += struct.pack("<B", ranked_status)
    out += struct.pack("<3H", *counts)
    out += struct.pack("<q", 0)
    if version >= 20140609:
        out += struct.pack("<4f", 9.0, 4.0, 6.0, 8.0)
    else:
        out += struct.pack("<4B", 9, 4, 6, 8)
    out += struct.pack("<d", 1.4)
    if version >= 20140609:
        for ruleset in range(4):
            pairs = stars if ruleset == 0 else {}
            out += struct.pack("<i", len(pairs))
            for mods, value in pairs.items():
                out += struct.pack("<Bi", 0x08, mods)
                if version >= 20250107:
                    out += struct.pack("<Bf", 0x0C, value)
                else:
                    out += struct.pack("<Bd", 0x0D, value)
    out += struct.pack("<iii", 90, 95000, 1000)
    out += struct.pack("<i", 1)
    out += struct.pack("<dd?", 500.0, 0.0, True)
    out += struct.pack("<iii", 111, 222, 0)
    out += bytes(4)
    out += struct.pack("<h", 0)
    out += struct.pack("<f", 0.7)
    out += struct.pack("<B", 0)
    out += encode_string("")
    out += encode_string("tags")
    out += struct.pack("<h", 0)
    out += encode_string("")
    out += struct.pack("<?", False)
    out += struct.pack("<q", 0)
    out += struct.pack("<?", False)
    out += encode_string(folder_name)
    out += struct.pack("<q", 0)
    out += bytes(5)
    if version < 20140609:
        out += struct.pack("<h", 0)
    out += struct.pack("<i", 0)
    out += struct.pack("<B", 0)
    return bytes(out)


def build_catalog(entries: list, version: int = 20240101, sizes: list = None) -> bytes:
    """Entries are raw bytes; versions before 20191106 get a size prefix each."""
    out = bytearray(struct.pack("<ii?q", version, 1, True, 0))
    out += encode_string("Alice")
    out += struct.pack("<i", len(entries))
    for index, entry in enumerate(entries):
        if version < 20191106:
            size = sizes[index] if sizes else len(entry)
            out += struct.pack("<i", size)
        out += entry
    return bytes(out)


# ─── .osu and .osr ───────────────────────────────────────────────────────────


OSU_TEXT = """osu file format v14

[General]
AudioFilename: audio.mp3
Mode: 0

[Metadata]
Title:Exit This Earth's Atomosphere
Artist:Camellia
Creator:Mapper
Version:Insane

[Difficulty]
HPDrainRate:6
CircleSize:4
OverallDifficulty:8
ApproachRate:9
SliderMultiplier:1.4
SliderTickRate:1

[Events]
//Background and Video events
0,0,"bg.jpg",0,0

[TimingPoints]
0,500,4,2,0,60,1,0

[HitObjects]
256,192,1000,1,0
256,192,1500,1,0
256,192,2000,1,0
100,100,2500,2,0,L|200:100,1,100
256,192,3500,12,0,5000
"""


def write_osu(path: Path, text: str = OSU_TEXT) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def replay_bytes(frames: list, mods: int = 0, compressed: bytes = None) -> bytes:
    """``frames`` are (delta, x, y, keys) tuples."""
    if compressed is None:
        text = ",".join(f"{w}|{x}|{y}|{k}" for w, x, y, k in frames)
        compressed = lzma.compress(text.encode("ascii"), format=lzma.FORMAT_ALONE)
    out = bytearray()
    out += struct.pack("<Bi", 0, 20240101)
    out += encode_string(MAP_HASH)
    out += encode_string("Alice")
    out += encode_string(REPLAY_HASH)
    out += struct.pack("<6H", 4, 0, 0, 0, 0, 0)
    out += struct.pack("<iH?i", 500_000, 5, True, mods)
    out += encode_string("")
    out += struct.pack("<q", ticks(PLAYED_AT))
    out += struct.pack("<i", len(compressed))
    out += compressed
    out += struct.pack("<q", 0)
    return bytes(out)


# presses near 1000/1500/2000/2500 with offsets -5, +5, -5, +5
HIT_FRAMES = [
    (0, 256, -500, 0),
    (-12345, 0, 0, 0),
    (995, 256, 192, 5),
    (50, 256, 192, 0),
    (460, 256, 192, 10),
    (50, 256, 192, 0),
    (440, 256, 192, 5),
    (50, 256, 192, 0),
    (460, 256, 192, 10),
    (50, 256, 192, 0),
]


def write_replay(path: Path, frames=None, mods: int = 0) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(replay_bytes(HIT_FRAMES if frames is None else frames, mods))
    return path


# ─── client.realm objects ────────────────────────────────────────────────────


OSU_FILE_HASH = "f" * 64
BACKGROUND_HASH = "e" * 64


def dynamic_beatmap(md5=MAP_HASH, ruleset="osu", with_set=True, **fields):
    beatmap = {
        "MD5Hash": md5,
        "Hash": OSU_FILE_HASH,
        "Ruleset": {"ShortName": ruleset},
        "DifficultyName": "Insane",
        "StarRating": 5.25,
        "Length": 95000.0,
        "BPM": 120.0,
        "StatusInt": 1,
        "LastPlayed": PLAYED_AT,
        "Metadata": {
            "Title": "Exit This Earth's Atomosphere",
            "Artist": "Camellia",
            "Author": {"Username": "Mapper"},
            "BackgroundFile": "bg.jpg",
        },
        "Difficulty": {
            "CircleSize": 4.0,
            "ApproachRate": 9.0,
            "OverallDifficulty": 8.0,
            "DrainRate": 6.0,
        },
    }
    if with_set:
        beatmap["BeatmapSet"] = {"Files": [
            {"Filename": "map.osu", "File": {"Hash": OSU_FILE_HASH}},
            {"Filename": "BG.jpg", "File": {"Hash": BACKGROUND_HASH}},
        ]}
    beatmap.update(fields)
    return beatmap


def dynamic_score(beatmap=None, username="Alice", online_id=-1, ruleset="osu", **fields):
    score = {
        "User": {"Username": username},
        "OnlineID": online_id,
        "Ruleset": {"ShortName": ruleset},
        "BeatmapInfo": beatmap if beatmap is not None else dynamic_beatmap(),
        "Accuracy": 0.97,
        "MaxCombo": 412,
        "Rank": 4,
        "Date": PLAYED_AT,
        "PP": None,
        "TotalScore": 800_000,
        "Mods": '[{"acronym": "HD"}, {"acronym": "DT"}]',
        "Statistics": '{"Great": 4, "Ok": 0, "Meh": 0, "Miss": 0, "slider_tail_hit": 1}',
        "HitEvents": [{"TimeOffset": -5.0}, {"TimeOffset": 5.0}],
        "Files": [{"Filename": "replay.osr", "File": {"Hash": "9" * 64}}],
    }
    score.update(fields)
    return score


# ─── fake collaborators ──────────────────────────────────────────────────────


class FakeHandle:
    def __init__(self, tables: dict):
        self._tables = tables

    @property
    def schema(self):
        return list(self._tables)

    def all(self, type_name: str):
        return list(self._tables.get(type_name, []))


class FakeStoreEngine:
    """In-memory store engine that insists on being opened at its own version."""

    def __init__(self, tables: dict, version: int = 7):
        self.tables = tables
        self.version = version
        self.opened = []

    @contextmanager
    def open(self, path: str, schema_version: int):
        if schema_version != self.version:
            raise RuntimeError(
                f"Provided schema version {schema_version} does not equal "
                f"last set version {self.version}."
            )
        self.opened.append((path, schema_version, Path(path).exists()))
        yield FakeHandle(self.tables)


class VersionedStoreEngine(FakeStoreEngine):
    def read_schema_version(self, path: str) -> int:
        return self.version


class FakeBackend:
    def __init__(self, pp=123.4, stars=5.5, max_combo=600, fail=False):
        self.pp = pp
        self.stars = stars
        self.max_combo = max_combo
        self.fail = fail
        self.requests = []

    def calculate(self, request):
        self.requests.append(request)
        if self.fail:
            raise CollaboratorUnavailable("backend down")
        return PerformanceResult(pp=self.pp, stars=self.stars, bpm=120.0, max_combo=self.max_combo)


# ─── fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
async def store(tmp_path):
    async with Store(tmp_path / "data" / "history.db") as opened:
        yield opened


@pytest.fixture
def stable_root(tmp_path):
    """A stable client folder with one score, its catalog entry, map and replay."""
    root = tmp_path / "osu"
    root.mkdir()
    (root / "scores.db").write_bytes(build_ledger({MAP_HASH: [ledger_score()]}))
    (root / "osu!.db").write_bytes(build_catalog([catalog_entry(20240101)]))
    write_osu(root / "Songs" / "123 Camellia - Exit" / "map.osu")
    (root / "Songs" / "123 Camellia - Exit" / "bg.jpg").write_bytes(b"\xff\xd8")
    write_replay(root / "Data" / "r" / f"{REPLAY_HASH}.osr")
    return root
