from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Float, Index
from sqlalchemy.orm import Mapped, mapped_column
from stats_indexer.infrastructure.db import Base


class ProductStats(Base):
    """Source fact table: one row of raw counters per product."""
    __tablename__ = "product_stats"
    entity_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    purchase_count: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ProductStatsIndex(Base):
    """Derived, query-optimized copy of product_stats."""
    __tablename__ = "product_stats_idx"
    product_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    purchase_count: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    conversion_rate: Mapped[float] = mapped_column(Float, default=0.0, index=True)
    average_order_value: Mapped[float] = mapped_column(Float, default=0.0)
    popularity_tier: Mapped[str] = mapped_column(String(16), default="low", index=True)
    indexed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_stats_idx_tier_views", "popularity_tier", "view_count"),
    )


class IndexChangelogEntry(Base):
    """Pending reindex marker; at most one row per (index_name, natural_id)."""
    __tablename__ = "indexer_changelog"
    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    index_name: Mapped[str] = mapped_column(String(64), index=True)
    natural_id: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ux_changelog_index_natural", "index_name", "natural_id", unique=True),
    )


class IndexerState(Base):
    """Persisted mode and validity per logical index.

    mode: immediate|scheduled
    status: new|valid|invalid|working
    """
    __tablename__ = "indexer_state"
    index_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    mode: Mapped[str] = mapped_column(String(16), default="immediate")
    status: Mapped[str] = mapped_column(String(16), default="new", index=True)
    last_full_reindex_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    last_changelog_run_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
