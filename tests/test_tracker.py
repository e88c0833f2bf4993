"""Tests for knowledge coverage tracking and auto-save."""

import asyncio
import atexit

import pytest

from kbcluster.storage.memory import MemoryBackend
from kbcluster.storage.tiered import TieredPersistenceStore
from kbcluster.tracking.autosave import AutoSaver
from kbcluster.tracking.progress import KnowledgeCatalog, KnowledgeProgressTracker

from conftest import BrokenBackend


def _catalog():
    return KnowledgeCatalog(
        chunk_ids=frozenset(f"c{i}" for i in range(20)),
        categories=frozenset(f"cat{i}" for i in range(8)),
        tags=frozenset(f"tag{i}" for i in range(40)),
        glossary_terms=frozenset(f"term{i}" for i in range(50)),
    )


def _store(clock, tier=None):
    return TieredPersistenceStore([tier or MemoryBackend()], clock=clock)


def test_weighted_coverage_scenario(clock):
    tracker = KnowledgeProgressTracker(_catalog(), clock=clock)
    tracker.record_exposure(
        chunk_ids=[f"c{i}" for i in range(10)],
        categories=["cat0", "cat1"],
        tags=[f"tag{i}" for i in range(5)],
        glossary_terms=["term0", "term1", "term2"],
    )
    assert tracker.coverage_percentage() == pytest.approx(33.1)


def test_coverage_capped_and_empty_catalog(clock):
    tracker = KnowledgeProgressTracker(KnowledgeCatalog(chunk_ids=frozenset({"a"})), clock=clock)
    assert tracker.coverage_percentage() == 0.0
    tracker.record_exposure(chunk_ids=["a", "b", "c"])
    # three seen against a total of one still counts as a full chunk dimension
    assert tracker.coverage_percentage() == 50.0


def test_gaps_are_set_differences(clock):
    tracker = KnowledgeProgressTracker(_catalog(), clock=clock)
    tracker.record_exposure(chunk_ids=["c0", "c1"], categories=["cat3"])
    gaps = tracker.gaps()
    assert len(gaps["chunks"]) == 18
    assert "c0" not in gaps["chunks"]
    assert gaps["categories"] == {f"cat{i}" for i in range(8)} - {"cat3"}
    assert len(gaps["tags"]) == 40


def test_new_knowledge_saved_immediately(clock):
    store = _store(clock)
    tracker = KnowledgeProgressTracker(_catalog(), store=store, clock=clock)

    assert tracker.record_exposure(chunk_ids=["c0"]) is True
    assert tracker.dirty is False
    assert store.load().learned_chunk_ids == {"c0"}

    # seen before: only the counter moves, saved later
    assert tracker.record_exposure(chunk_ids=["c0"]) is False
    assert tracker.dirty is True
    assert tracker.state.exposure_count == 2
    assert tracker.save_if_dirty() is True
    assert store.load().exposure_count == 2


def test_state_restored_on_startup(clock):
    store = _store(clock)
    first = KnowledgeProgressTracker(_catalog(), store=store, clock=clock)
    first.record_exposure(chunk_ids=["c0", "c1"], tags=["tag1"])

    second = KnowledgeProgressTracker(_catalog(), store=store, clock=clock)
    assert second.state.learned_chunk_ids == {"c0", "c1"}
    assert second.state.tags_seen == {"tag1"}
    assert second.coverage_percentage() == first.coverage_percentage()


def test_corrupt_saved_state_starts_fresh(clock):
    tier = MemoryBackend()
    tier.set("knowledge_state", '{"schemaVersion": 3, "savedAt": NaN}')
    tracker = KnowledgeProgressTracker(_catalog(), store=_store(clock, tier), clock=clock)
    assert tracker.state.exposure_count == 0
    assert tracker.coverage_percentage() == 0.0


def test_failed_save_stays_dirty(clock):
    tracker = KnowledgeProgressTracker(_catalog(), store=_store(clock, BrokenBackend()), clock=clock)
    tracker.record_exposure(chunk_ids=["c0"])
    assert tracker.dirty is True


def test_record_chunks_uses_metadata(two_group_chunks, clock):
    catalog = KnowledgeCatalog.from_chunks(two_group_chunks)
    tracker = KnowledgeProgressTracker(catalog, clock=clock)
    tracker.record_chunks(two_group_chunks[:2])

    assert tracker.state.learned_chunk_ids == {"c0", "c1"}
    assert tracker.state.categories_seen == {"bridge"}
    assert tracker.state.tags_seen == {"bridge", "t0", "t1"}
    assert tracker.state.glossary_terms_seen == {"term0", "term1"}


def test_catalog_minimum_totals(two_group_chunks):
    catalog = KnowledgeCatalog.from_chunks(two_group_chunks, minimum_totals={"categories": 8, "tags": 40})
    totals = catalog.totals()
    assert totals == {"chunks": 6, "categories": 8, "tags": 40, "glossary_terms": 6}
    with pytest.raises(ValueError):
        KnowledgeCatalog.from_chunks(two_group_chunks, minimum_totals={"colours": 3})


def test_breakdown(clock):
    tracker = KnowledgeProgressTracker(_catalog(), clock=clock)
    tracker.record_exposure(chunk_ids=[f"c{i}" for i in range(5)])
    b = tracker.breakdown()
    assert b["dimensions"]["chunks"] == {"known": 5, "total": 20, "percentage": 25.0}
    assert b["overall"] == 12.5
    assert b["exposure_count"] == 1


def test_reset_clears_everything(clock):
    store = _store(clock)
    tracker = KnowledgeProgressTracker(_catalog(), store=store, clock=clock)
    tracker.record_exposure(chunk_ids=["c0"])
    tracker.reset()
    assert tracker.state.learned_chunk_ids == set()
    assert store.load() is None


def test_exit_hook_registered_once(clock, monkeypatch):
    registered = []
    monkeypatch.setattr(atexit, "register", registered.append)
    tracker = KnowledgeProgressTracker(_catalog(), clock=clock)
    tracker.install_exit_hook()
    tracker.install_exit_hook()
    assert registered == [tracker.save_if_dirty]


@pytest.mark.asyncio
async def test_autosave_flushes_dirty_state(clock):
    store = _store(clock)
    tracker = KnowledgeProgressTracker(_catalog(), store=store, clock=clock)
    tracker.record_exposure(chunk_ids=["c0"])
    tracker.record_exposure(chunk_ids=["c0"])
    assert tracker.dirty

    async with AutoSaver(tracker, interval=0.01) as saver:
        assert saver.running
        await asyncio.sleep(0.05)
        assert tracker.dirty is False
    assert store.load().exposure_count == 2


@pytest.mark.asyncio
async def test_autosave_stop_flushes(clock):
    store = _store(clock)
    tracker = KnowledgeProgressTracker(_catalog(), store=store, clock=clock)
    saver = AutoSaver(tracker, interval=60)
    saver.start()
    tracker.record_exposure(chunk_ids=["c0"])
    tracker.record_exposure(chunk_ids=["c0"])
    await saver.stop()
    assert not saver.running
    assert tracker.dirty is False
    assert store.load().exposure_count == 2


def test_autosave_rejects_bad_interval(clock):
    with pytest.raises(ValueError):
        AutoSaver(KnowledgeProgressTracker(_catalog(), clock=clock), interval=0)
