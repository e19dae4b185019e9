"""Tests for the scores.db reader: record layout, filters, aliases and replay linking."""

import os

import pytest

from play_history.core.errors import SourceNotFound, StructuralDecodeError
from play_history.core.outcomes import OutcomeKind
from play_history.core.sources.ledger import AliasMatcher, link_replay, read_ledger

from conftest import MAP_HASH, PLAYED_AT, REPLAY_HASH, build_ledger, ledger_score


def write(tmp_path, scores, groups=None):
    path = tmp_path / "scores.db"
    path.write_bytes(build_ledger(groups or {MAP_HASH: scores}))
    return path


class TestReadLedger:
    def test_single_matching_record(self, tmp_path):
        contents = read_ledger(write(tmp_path, [ledger_score()]), ["Alice"])
        assert contents.version == 20240101
        assert len(contents.scores) == 1
        score = contents.scores[0]
        assert score.beatmap_hash == MAP_HASH
        assert score.player_name == "Alice"
        assert score.replay_hash == REPLAY_HASH
        assert (score.count300, score.count100, score.count50) == (300, 10, 2)
        assert (score.count_geki, score.count_katu, score.misses) == (40, 5, 1)
        assert score.score == 500_000
        assert score.max_combo == 400
        assert score.timestamp == PLAYED_AT

    @pytest.mark.parametrize("overrides, reason", [
        ({"ruleset": 1}, "ruleset"),
        ({"score": 0}, "score"),
        ({"player": "Bob"}, "player"),
    ])
    def test_each_filter_drops_the_record(self, tmp_path, overrides, reason):
        contents = read_ledger(write(tmp_path, [ledger_score(**overrides)]), ["Alice"])
        assert contents.scores == []
        assert contents.outcomes[0].kind is OutcomeKind.FILTERED
        assert contents.outcomes[0].reason == reason

    def test_filtered_record_keeps_stream_aligned(self, tmp_path):
        scores = [ledger_score(ruleset=3), ledger_score(player="Bob"), ledger_score(score=42)]
        contents = read_ledger(write(tmp_path, scores), ["Alice"])
        assert [s.score for s in contents.scores] == [42]

    def test_multiple_groups(self, tmp_path):
        other = "c" * 32
        groups = {
            MAP_HASH: [ledger_score(), ledger_score(score=1)],
            other: [ledger_score(beatmap_hash=other)],
        }
        contents = read_ledger(write(tmp_path, [], groups), [])
        assert len(contents.scores) == 3

    def test_bad_timestamp_fails_only_that_record(self, tmp_path):
        scores = [ledger_score(raw_timestamp=(1 << 62) | ((1 << 62) - 1)), ledger_score(score=7)]
        contents = read_ledger(write(tmp_path, scores), ["Alice"])
        kinds = [o.kind for o in contents.outcomes]
        assert kinds == [OutcomeKind.FAILED, OutcomeKind.ACCEPTED]

    def test_truncated_file_is_structural(self, tmp_path):
        data = build_ledger({MAP_HASH: [ledger_score()]})
        path = tmp_path / "scores.db"
        path.write_bytes(data[:-6])
        with pytest.raises(StructuralDecodeError):
            read_ledger(path, ["Alice"])

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceNotFound):
            read_ledger(tmp_path / "nope.db", ["Alice"])


class TestAliasMatcher:
    def test_no_aliases_matches_everyone(self):
        matcher = AliasMatcher([])
        assert matcher.open
        assert matcher("Anyone")

    def test_case_insensitive_exact(self):
        matcher = AliasMatcher(["Alice", "  alice_alt "])
        assert matcher("ALICE")
        assert matcher("Alice_Alt")
        assert not matcher("Alic")

    @pytest.mark.parametrize("name", ["", "   ", "Guest", "guest"])
    def test_anonymous_names_always_match(self, name):
        assert AliasMatcher(["Alice"])(name)


class TestLinkReplay:
    def test_exact_replay_hash(self, tmp_path):
        replay = tmp_path / "Data" / "r" / f"{REPLAY_HASH}.osr"
        replay.parent.mkdir(parents=True)
        replay.write_bytes(b"x")
        assert link_replay(tmp_path, REPLAY_HASH, MAP_HASH, PLAYED_AT) == str(replay)

    def test_falls_back_to_nearest_mtime(self, tmp_path):
        directory = tmp_path / "Data" / "r"
        directory.mkdir(parents=True)
        near = directory / f"{MAP_HASH}-1.osr"
        far = directory / f"{MAP_HASH}-2.osr"
        near.write_bytes(b"x")
        far.write_bytes(b"x")
        played = PLAYED_AT.timestamp()
        os.utime(near, (played + 60, played + 60))
        os.utime(far, (played + 3600, played + 3600))
        assert link_replay(tmp_path, "", MAP_HASH, PLAYED_AT) == str(near)

    def test_nothing_within_window(self, tmp_path):
        directory = tmp_path / "Data" / "r"
        directory.mkdir(parents=True)
        stale = directory / f"{MAP_HASH}.osr"
        stale.write_bytes(b"x")
        played = PLAYED_AT.timestamp()
        os.utime(stale, (played + 3 * 3600, played + 3 * 3600))
        assert link_replay(tmp_path, "", MAP_HASH, PLAYED_AT) == ""
