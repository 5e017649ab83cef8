"""Tests for the derived metric calculator."""

from __future__ import annotations

from datetime import datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st

from stats_indexer.indexer.calculator import (
    PopularityTier,
    average_order_value,
    conversion_rate,
    derive_index_row,
    popularity_tier,
)

counts = st.integers(min_value=0, max_value=10_000_000)
revenues = st.floats(min_value=0, max_value=1e9, allow_nan=False, allow_infinity=False)


def test_example_row():
    row = derive_index_row({"product_id": 7, "view_count": 1500, "purchase_count": 300, "revenue": 15000.00})
    assert row["product_id"] == 7
    assert row["conversion_rate"] == 20.00
    assert row["average_order_value"] == 50.0
    assert row["popularity_tier"] == "high"
    assert isinstance(row["indexed_at"], datetime)


@pytest.mark.parametrize(
    ("views", "tier"),
    [(0, PopularityTier.LOW), (99, PopularityTier.LOW), (100, PopularityTier.MEDIUM),
     (999, PopularityTier.MEDIUM), (1000, PopularityTier.HIGH), (250_000, PopularityTier.HIGH)],
)
def test_tier_boundaries(views, tier):
    assert popularity_tier(views) is tier


def test_zero_denominators():
    assert conversion_rate(0, 0) == 0.0
    assert conversion_rate(0, 5) == 0.0
    assert average_order_value(120.0, 0) == 0.0


def test_rounding_is_half_up():
    # 1/8 = 12.5% exactly; 1/3 -> 33.33; 2/3 -> 66.67
    assert conversion_rate(8, 1) == 12.5
    assert conversion_rate(3, 1) == 33.33
    assert conversion_rate(3, 2) == 66.67
    assert conversion_rate(2000, 1) == 0.05
    assert average_order_value(10.0, 3) == 3.3333
    assert average_order_value(0.00005, 1) == 0.0001


def test_missing_counters_default_to_zero():
    row = derive_index_row({"product_id": 3})
    assert row["view_count"] == 0
    assert row["conversion_rate"] == 0.0
    assert row["popularity_tier"] == "low"


def test_now_is_used_for_indexed_at():
    now = datetime(2024, 1, 1, 12, 0, 0)
    assert derive_index_row({"product_id": 1}, now=now)["indexed_at"] == now


@given(views=counts, purchases=counts, revenue=revenues)
def test_derive_is_deterministic(views, purchases, revenue):
    now = datetime(2024, 1, 1)
    source = {"product_id": 1, "view_count": views, "purchase_count": purchases, "revenue": revenue}
    assert derive_index_row(source, now=now) == derive_index_row(dict(source), now=now)


@given(views=counts, purchases=counts)
def test_conversion_rate_non_negative_and_two_places(views, purchases):
    rate = conversion_rate(views, purchases)
    assert rate >= 0
    assert round(rate, 2) == rate
    if views == 0:
        assert rate == 0.0


@given(views=counts)
def test_tier_is_monotonic_in_views(views):
    order = {PopularityTier.LOW: 0, PopularityTier.MEDIUM: 1, PopularityTier.HIGH: 2}
    assert order[popularity_tier(views)] <= order[popularity_tier(views + 1)]


@given(revenue=revenues, purchases=st.integers(min_value=1, max_value=1_000_000))
def test_average_order_value_close_to_ratio(revenue, purchases):
    aov = average_order_value(revenue, purchases)
    assert aov >= 0
    assert abs(aov - revenue / purchases) <= 0.00005 + 1e-9 * max(1.0, revenue / purchases)
