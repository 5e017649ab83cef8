"""Logical index definitions.

A logical index pairs one source table with one derived table. The index name
travels explicitly through every component built for it.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping
from stats_indexer.indexer.calculator import derive_index_row
from stats_indexer.indexer.errors import ConfigurationError
from stats_indexer.models.tables import ProductStats, ProductStatsIndex

PRODUCT_STATS_INDEX = "product_stats"

_MODE_ALIASES = {
    "immediate": "immediate",
    "realtime": "immediate",
    "update_on_save": "immediate",
    "scheduled": "scheduled",
    "schedule": "scheduled",
    "update_by_schedule": "scheduled",
}


class IndexMode(str, Enum):
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"

    @classmethod
    def parse(cls, value: "str | IndexMode") -> "IndexMode":
        if isinstance(value, IndexMode):
            return value
        key = str(value or "").strip().lower()
        if key not in _MODE_ALIASES:
            raise ConfigurationError(f"invalid index mode: {value!r}")
        return cls(_MODE_ALIASES[key])


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    source_model: Any
    index_model: Any
    key: str
    counters: tuple[str, ...]
    derive: Callable[[Mapping[str, Any]], dict]
    title: str = ""

    @property
    def source_key_column(self):
        return getattr(self.source_model, self.key)

    @property
    def index_key_column(self):
        return getattr(self.index_model, self.key)

    def source_columns(self) -> list:
        return [self.source_key_column] + [getattr(self.source_model, c) for c in self.counters]


PRODUCT_STATS = IndexDefinition(
    name=PRODUCT_STATS_INDEX,
    source_model=ProductStats,
    index_model=ProductStatsIndex,
    key="product_id",
    counters=("view_count", "purchase_count", "revenue"),
    derive=derive_index_row,
    title="Product statistics",
)

_definitions: dict[str, IndexDefinition] = {PRODUCT_STATS.name: PRODUCT_STATS}


def register_definition(definition: IndexDefinition) -> None:
    _definitions[definition.name] = definition


def get_definition(name: str) -> IndexDefinition:
    try:
        return _definitions[name]
    except KeyError:
        raise ConfigurationError(f"unknown logical index: {name!r}") from None


def definition_names() -> list[str]:
    return sorted(_definitions)
