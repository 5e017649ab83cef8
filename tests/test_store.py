"""Tests for the index store: writes, point lookups and read queries."""

from __future__ import annotations

import pytest

from stats_indexer.indexer.calculator import derive_index_row
from stats_indexer.indexer.errors import ConfigurationError, NotFound


def _row(product_id, views, purchases, revenue):
    return derive_index_row(
        {"product_id": product_id, "view_count": views, "purchase_count": purchases, "revenue": revenue}
    )


@pytest.fixture()
def store(index):
    s = index.store
    s.bulk_insert([
        _row(1, 1500, 300, 15000.0),   # high, 20%
        _row(2, 2500, 50, 1000.0),     # high, 2%
        _row(3, 500, 100, 2500.0),     # medium, 20%
        _row(4, 150, 0, 0.0),          # medium, 0%
        _row(5, 10, 1, 99.99),         # low, 10%
    ])
    return s


def test_get_and_find(store):
    assert store.get(1)["popularity_tier"] == "high"
    assert store.find(42) is None
    with pytest.raises(NotFound):
        store.get(42)


def test_count_and_truncate(store):
    assert store.count() == 5
    assert store.truncate() == 5
    assert store.count() == 0


def test_upsert_replaces_row(store):
    store.upsert(_row(4, 150, 15, 300.0))
    row = store.get(4)
    assert row["purchase_count"] == 15
    assert row["conversion_rate"] == 10.0
    assert store.count() == 5


def test_upsert_inserts_new_row(store):
    store.upsert(_row(6, 1000, 10, 100.0))
    assert store.get(6)["popularity_tier"] == "high"
    assert store.count() == 6


def test_top_by_tier_orders_by_views(store):
    assert [r["product_id"] for r in store.top_by_tier("high")] == [2, 1]
    assert [r["product_id"] for r in store.top_by_tier("medium", limit=1)] == [3]


def test_top_by_tier_rejects_unknown_tier(store):
    with pytest.raises(ConfigurationError):
        store.top_by_tier("legendary")


def test_top_by_conversion_skips_products_without_purchases(store):
    ids = [r["product_id"] for r in store.top_by_conversion(limit=10)]
    # ties on conversion break by product id
    assert ids == [1, 3, 5, 2]
    assert 4 not in ids


def test_scan_rejects_unknown_ordering(store):
    with pytest.raises(ConfigurationError):
        store.scan(order_by="revenue")


def test_summary_by_tier(store):
    summary = store.summary_by_tier()
    assert [s["tier"] for s in summary] == ["high", "medium", "low"]
    high, medium, low = summary
    assert high == {"tier": "high", "count": 2, "avg_conversion": 11.0, "total_revenue": 16000.0}
    assert medium["count"] == 2
    assert medium["avg_conversion"] == 10.0
    assert low["total_revenue"] == 99.99


def test_summary_skips_empty_tiers(index):
    index.store.bulk_insert([_row(9, 5, 0, 0.0)])
    assert [s["tier"] for s in index.store.summary_by_tier()] == ["low"]


def test_snapshot_excludes_indexed_at(store):
    snap = store.snapshot()
    assert set(snap) == {1, 2, 3, 4, 5}
    assert "indexed_at" not in snap[1]
