"""Tests for the in-memory dedup index."""

from datetime import timedelta, timezone, datetime

from play_history.core.dedup import DeduplicationIndex
from play_history.core.models import DedupSignature, Play

from conftest import MAP_HASH, PLAYED_AT


def play(**overrides):
    values = dict(created_at=PLAYED_AT, beatmap_hash=MAP_HASH, score=1000)
    values.update(overrides)
    return Play(**values)


class TestDeduplicationIndex:
    def test_first_admission_wins(self):
        index = DeduplicationIndex()
        assert index.admit(play())
        assert not index.admit(play(pp=300.0, notes="seen live"))
        assert len(index) == 1

    def test_seeded_from_store(self):
        index = DeduplicationIndex([play().signature])
        assert play().signature in index
        assert not index.admit(play())

    def test_any_signature_component_distinguishes(self):
        index = DeduplicationIndex()
        assert index.admit(play())
        assert index.admit(play(score=1001))
        assert index.admit(play(beatmap_hash="c" * 32))
        assert index.admit(play(created_at=PLAYED_AT + timedelta(seconds=1)))

    def test_timezones_normalize_to_utc(self):
        offset = timezone(timedelta(hours=9))
        index = DeduplicationIndex([play().signature])
        assert not index.admit(play(created_at=PLAYED_AT.astimezone(offset)))

    def test_signature_text(self):
        signature = DedupSignature.of(MAP_HASH, 1000, datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        assert signature == (MAP_HASH, 1000, "2024-01-02T03:04:05.000000Z")

    def test_reported_score_is_its_own_identity(self):
        index = DeduplicationIndex()
        assert index.admit(play(score=800_000, reported_score=800_000))
        assert not index.admit(play(score=80_651, reported_score=800_000))

    def test_seeded_reported_score(self):
        rescaled = play(score=80_651, reported_score=800_000)
        assert len(rescaled.signatures) == 2
        index = DeduplicationIndex(rescaled.signatures)
        assert not index.admit(play(score=800_000, reported_score=800_000))

    def test_is_duplicate_does_not_record(self):
        index = DeduplicationIndex()
        assert not index.is_duplicate(play())
        assert index.admit(play())
