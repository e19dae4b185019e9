"""Tests for score arithmetic and mod handling."""

import logging

import pytest

from play_history.core.beatmap_file import parse_beatmap_text
from play_history.core.mods import (
    Mods,
    canonical_mods,
    format_mods,
    mods_from_bitmask,
    mods_to_bitmask,
    parse_mods_json,
    parse_mods_text,
)
from play_history.core.scoring import (
    SCORE_V2_MAX,
    accuracy,
    check_legacy_score,
    classic_score,
    clock_rate,
    grade_from_judgements,
    grade_from_rank,
    key_balance,
    legacy_max_score,
    unstable_rate,
)

from conftest import OSU_TEXT


class TestClassicScore:
    def test_known_value(self):
        assert classic_score(500, 800_000) == 6_594_000

    def test_unknown_object_count(self):
        assert classic_score(0, 800_000) == 800_000


class TestConsistencyMetrics:
    def test_unstable_rate(self):
        assert unstable_rate([-5, 5]) == 50.0

    def test_unstable_rate_empty(self):
        assert unstable_rate([]) == 0.0

    def test_single_key(self):
        assert key_balance({"K1": 12, "K2": 0}) == 1.0

    def test_nothing_pressed(self):
        assert key_balance({}) == 0.5
        assert key_balance({"K1": 0, "K2": 0}) == 0.5

    def test_top_two_keys(self):
        assert key_balance({"K1": 30, "K2": 10, "M1": 5}) == 0.75


class TestGrades:
    def test_accuracy(self):
        assert accuracy(0, 0, 0, 0) == 0.0
        assert accuracy(1, 1, 0, 0) == pytest.approx(400 / 600)

    @pytest.mark.parametrize("counts, mods, grade", [
        ((100, 0, 0, 0), (), "X"),
        ((100, 0, 0, 0), ("HD",), "XH"),
        ((95, 5, 0, 0), (), "S"),
        ((95, 4, 0, 1), (), "A"),
        ((85, 15, 0, 0), (), "A"),
        ((75, 25, 0, 0), (), "B"),
        ((65, 35, 0, 0), (), "C"),
        ((50, 50, 0, 0), (), "D"),
    ])
    def test_from_judgements(self, counts, mods, grade):
        assert grade_from_judgements(*counts, mods) == grade

    def test_from_rank(self):
        assert grade_from_rank(0) == "D"
        assert grade_from_rank(7) == "XH"
        assert grade_from_rank(-1) == "F"


class TestClockRate:
    def test_rates(self):
        assert clock_rate(int(Mods.DOUBLETIME)) == 1.5
        assert clock_rate(int(Mods.NIGHTCORE)) == 1.5
        assert clock_rate(int(Mods.HALFTIME)) == 0.75
        assert clock_rate(0) == 1.0


class TestLegacyMaxScore:
    def test_positive_estimate(self):
        assert legacy_max_score(parse_beatmap_text(OSU_TEXT), ()) > 0

    def test_score_v2_cap(self):
        assert legacy_max_score(parse_beatmap_text(OSU_TEXT), ("SV2",)) == SCORE_V2_MAX

    def test_easy_lowers_estimate(self):
        beatmap = parse_beatmap_text(OSU_TEXT)
        assert legacy_max_score(beatmap, ("EZ",)) < legacy_max_score(beatmap, ())

    def test_check_warns_on_impossible_score(self, caplog):
        beatmap = parse_beatmap_text(OSU_TEXT, "map.osu")
        with caplog.at_level(logging.WARNING):
            estimate = check_legacy_score(10_000_000, beatmap, (), 1.0)
        assert estimate == legacy_max_score(beatmap, ())
        assert "exceeds legacy maximum" in caplog.text

    def test_check_accepts_plausible_score(self):
        assert check_legacy_score(1, parse_beatmap_text(OSU_TEXT), (), 1.0) is None


class TestMods:
    def test_canonical_order_and_absorption(self):
        assert canonical_mods(["dt", "NC", "hd", "SD", "PF"]) == ("HD", "NC", "PF")

    def test_unknown_acronyms_sort_last(self):
        assert canonical_mods(["ZZ", "HR", "AA"]) == ("HR", "AA", "ZZ")

    def test_bitmask_round_trip(self):
        mask = int(Mods.HIDDEN | Mods.HARDROCK)
        assert mods_from_bitmask(mask) == ["HD", "HR"]
        assert mods_to_bitmask(["HD", "HR"]) == mask

    def test_nightcore_sets_doubletime_bit(self):
        assert mods_to_bitmask(["NC"]) & Mods.DOUBLETIME

    def test_parse_mods_json(self):
        assert parse_mods_json('[{"acronym": "HD"}, {"Acronym": "DT"}, "FL"]') == ["HD", "DT", "FL"]
        assert parse_mods_json("garbage") == []
        assert parse_mods_json(None) == []

    def test_text_form(self):
        assert format_mods(()) == "NM"
        assert parse_mods_text("NM") == ()
        assert parse_mods_text(format_mods(("HD", "CL"))) == ("HD", "CL")
