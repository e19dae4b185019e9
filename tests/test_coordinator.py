"""Tests for per-source serialization and shutdown."""

import asyncio

from play_history.config import ImportConfig
from play_history.coordinator import ImportCoordinator
from play_history.core.models import ImportSummary, Play
from play_history import coordinator as coordinator_module

from conftest import MAP_HASH, PLAYED_AT


def slow_import(events, source):
    async def run(*args):
        events.append(f"start-{source}")
        await asyncio.sleep(0.01)
        events.append(f"end-{source}")
        return ImportSummary(source=source)
    return run


class TestSerialization:
    async def test_same_source_runs_one_at_a_time(self, monkeypatch, tmp_path, store):
        events = []
        monkeypatch.setattr(coordinator_module, "run_stable_import", slow_import(events, "stable"))
        coordinator = ImportCoordinator(ImportConfig(data_dir=tmp_path), store)
        await asyncio.gather(coordinator.import_stable(), coordinator.import_stable())
        assert events == ["start-stable", "end-stable", "start-stable", "end-stable"]

    async def test_sources_overlap(self, monkeypatch, tmp_path, store):
        events = []
        monkeypatch.setattr(coordinator_module, "run_stable_import", slow_import(events, "stable"))
        monkeypatch.setattr(coordinator_module, "run_dynamic_import", slow_import(events, "dynamic"))
        coordinator = ImportCoordinator(ImportConfig(data_dir=tmp_path), store, engine=object())
        await asyncio.gather(coordinator.import_stable(), coordinator.import_dynamic())
        assert events[:2] == ["start-stable", "start-dynamic"]

    async def test_busy(self, monkeypatch, tmp_path, store):
        monkeypatch.setattr(coordinator_module, "run_stable_import", slow_import([], "stable"))
        coordinator = ImportCoordinator(ImportConfig(data_dir=tmp_path), store)
        task = asyncio.create_task(coordinator.import_stable())
        await asyncio.sleep(0)
        assert coordinator.busy("stable")
        assert not coordinator.busy("dynamic")
        await task


class TestStop:
    async def test_stop_waits_for_in_flight_pass(self, monkeypatch, tmp_path, store):
        events = []
        monkeypatch.setattr(coordinator_module, "run_stable_import", slow_import(events, "stable"))
        coordinator = ImportCoordinator(ImportConfig(data_dir=tmp_path), store)
        task = asyncio.create_task(coordinator.import_stable())
        await asyncio.sleep(0)
        await coordinator.stop()
        assert events == ["start-stable", "end-stable"]
        assert (await task).ok

    async def test_stopped_coordinator_refuses_passes(self, tmp_path, store):
        coordinator = ImportCoordinator(ImportConfig(data_dir=tmp_path), store)
        await coordinator.stop()
        assert coordinator.stopped
        assert (await coordinator.import_stable()).error == "Coordinator is stopped"
        assert (await coordinator.import_dynamic()).error == "Coordinator is stopped"


class TestDynamicWithoutEngine:
    async def test_reports_missing_engine(self, tmp_path, store):
        summary = await ImportCoordinator(ImportConfig(data_dir=tmp_path), store).import_dynamic()
        assert summary.error == "No store engine available"


class TestLiveCapture:
    async def test_records_while_import_holds_lock(self, monkeypatch, tmp_path, store):
        monkeypatch.setattr(coordinator_module, "run_stable_import", slow_import([], "stable"))
        coordinator = ImportCoordinator(ImportConfig(data_dir=tmp_path), store)
        task = asyncio.create_task(coordinator.import_stable())
        await asyncio.sleep(0)
        play_id = await coordinator.record_live(Play(created_at=PLAYED_AT, beatmap_hash=MAP_HASH, score=1))
        assert play_id is not None
        await task
