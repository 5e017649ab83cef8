"""Tests for full, list and single-row reindexing."""

from __future__ import annotations

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import OperationalError

from stats_indexer.indexer.errors import IndexBusy, TransientIOFailure
from stats_indexer.indexer.state import STATUS_INVALID, STATUS_VALID
from stats_indexer.models.tables import ProductStats

from conftest import seed_products

ROWS = [
    (1001, 1500, 300, 15000.0),
    (1002, 40, 2, 80.0),
    (1003, 999, 0, 0.0),
    (1004, 100, 7, 123.45),
]


@pytest.fixture()
def seeded(scheduled, service):
    # scheduled mode keeps the index empty while seeding
    seed_products(service, ROWS)
    scheduled.changelog.clear()
    return scheduled


def test_full_reindex_builds_every_row(seeded):
    result = seeded.action.reindex_full()
    assert result.granularity == "full"
    assert result.indexed == len(ROWS)
    assert seeded.store.count() == len(ROWS)
    assert seeded.store.get(1001)["conversion_rate"] == 20.0
    state = seeded.state.get()
    assert state.status == STATUS_VALID
    assert state.last_full_reindex_at is not None


def test_full_reindex_paginates_with_small_batches(seeded):
    seeded.action.batch_size = 3
    assert seeded.action.reindex_full().indexed == len(ROWS)
    assert seeded.store.count() == len(ROWS)


def test_full_and_list_reindex_agree(seeded):
    seeded.action.reindex_full()
    after_full = seeded.store.snapshot()
    seeded.store.truncate()
    seeded.action.reindex_list([r[0] for r in ROWS])
    assert seeded.store.snapshot() == after_full


def test_list_reindex_is_idempotent(seeded):
    ids = [1001, 1002]
    seeded.action.reindex_list(ids)
    first = seeded.store.snapshot()
    seeded.action.reindex_list(ids)
    assert seeded.store.snapshot() == first


def test_list_reindex_tolerates_deleted_ids(seeded, session_factory):
    with session_factory() as s:
        s.execute(delete(ProductStats).where(ProductStats.product_id == 1003))
        s.commit()
    result = seeded.action.reindex_list([1001, 1003, 5555])
    assert result.indexed == 1
    assert result.missing == [1003, 5555]
    assert seeded.store.find(1003) is None


def test_list_reindex_dedupes_ids(seeded):
    result = seeded.action.reindex_list([1002, 1002, 1004])
    assert result.requested == 2
    assert result.indexed == 2


def test_empty_list_is_noop(seeded):
    result = seeded.action.reindex_list([])
    assert result.requested == 0
    assert seeded.store.count() == 0


def test_row_reindex(seeded):
    result = seeded.action.reindex_row(1004)
    assert result.granularity == "row"
    assert seeded.store.get(1004)["popularity_tier"] == "medium"


def test_full_reindex_failure_marks_invalid(seeded, monkeypatch):
    def broken(rows):
        raise TransientIOFailure("disk full")

    monkeypatch.setattr(seeded.store, "bulk_insert", broken)
    with pytest.raises(TransientIOFailure):
        seeded.action.reindex_full()
    assert seeded.state.get().status == STATUS_INVALID


def test_full_reindex_wraps_database_errors(seeded, monkeypatch):
    def broken():
        raise OperationalError("SELECT", {}, Exception("database is locked"))
        yield  # pragma: no cover

    monkeypatch.setattr(seeded.action, "_iter_source_pages", broken)
    with pytest.raises(TransientIOFailure):
        seeded.action.reindex_full()
    assert seeded.state.get().status == STATUS_INVALID


def test_reindex_refuses_to_overlap(seeded):
    seeded.action.lock_wait_seconds = 0.01
    with seeded.action.lock.hold():
        with pytest.raises(IndexBusy):
            seeded.action.reindex_full()
        with pytest.raises(IndexBusy):
            seeded.action.reindex_list([1001])


def test_list_reindex_of_deleted_id_leaves_index_untouched(seeded):
    seeded.action.reindex_full()
    before = seeded.store.snapshot()
    result = seeded.action.reindex_list([5555])
    assert result.missing == [5555]
    assert seeded.store.snapshot() == before
