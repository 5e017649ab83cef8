"""Derived metrics for the product stats index.

Values are pre-computed at index time so read queries can filter and sort on
them without recomputing ratios per request.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Mapping

HIGH_TIER_MIN_VIEWS = 1000
MEDIUM_TIER_MIN_VIEWS = 100

_TWO_PLACES = Decimal("0.01")
_FOUR_PLACES = Decimal("0.0001")


class PopularityTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


TIER_ORDER = (PopularityTier.HIGH, PopularityTier.MEDIUM, PopularityTier.LOW)


def _round(value: Decimal, places: Decimal) -> float:
    # half away from zero, not banker's rounding
    return float(value.quantize(places, rounding=ROUND_HALF_UP))


def conversion_rate(view_count: int, purchase_count: int) -> float:
    if view_count <= 0:
        return 0.0
    return _round(Decimal(purchase_count) / Decimal(view_count) * 100, _TWO_PLACES)


def average_order_value(revenue: float, purchase_count: int) -> float:
    if purchase_count <= 0:
        return 0.0
    return _round(Decimal(str(revenue)) / Decimal(purchase_count), _FOUR_PLACES)


def popularity_tier(view_count: int) -> PopularityTier:
    if view_count >= HIGH_TIER_MIN_VIEWS:
        return PopularityTier.HIGH
    if view_count >= MEDIUM_TIER_MIN_VIEWS:
        return PopularityTier.MEDIUM
    return PopularityTier.LOW


def derive_index_row(source: Mapping[str, Any], now: datetime | None = None) -> dict:
    """Build an index row from a source row mapping.

    ``source`` needs ``product_id``, ``view_count``, ``purchase_count`` and
    ``revenue``; missing counters are treated as zero.
    """
    view_count = int(source.get("view_count") or 0)
    purchase_count = int(source.get("purchase_count") or 0)
    revenue = float(source.get("revenue") or 0.0)
    return {
        "product_id": int(source["product_id"]),
        "view_count": view_count,
        "purchase_count": purchase_count,
        "revenue": revenue,
        "conversion_rate": conversion_rate(view_count, purchase_count),
        "average_order_value": average_order_value(revenue, purchase_count),
        "popularity_tier": popularity_tier(view_count).value,
        "indexed_at": now or datetime.utcnow(),
    }
