"""Shared fixtures: one throwaway SQLite file per test, wired into a fresh manager."""

from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_ENV"] = "test"
os.environ["INDEX_LOCK_BACKEND"] = "local"
os.environ["DEFAULT_INDEX_MODE"] = "immediate"
os.environ.pop("ADMIN_API_KEYS", None)

import pytest  # noqa: E402

from stats_indexer.config import reset_settings  # noqa: E402
from stats_indexer.indexer.definitions import PRODUCT_STATS_INDEX, IndexMode  # noqa: E402
from stats_indexer.indexer.manager import IndexerManager, reset_manager  # noqa: E402
from stats_indexer.infrastructure import db  # noqa: E402
from stats_indexer.infrastructure.index_lock import reset_index_locks  # noqa: E402
from stats_indexer.models import tables  # noqa: E402,F401
from stats_indexer.service import ProductStatsService  # noqa: E402


@pytest.fixture()
def engine(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits."""
    e = db.make_engine(f"sqlite:///{tmp_path / 'stats.db'}")
    db.Base.metadata.create_all(e)
    db.override_engine(e)
    reset_settings()
    reset_index_locks()
    reset_manager()
    yield e
    reset_manager()
    reset_index_locks()
    e.dispose()


@pytest.fixture()
def session_factory(engine):
    return db.get_session_factory()


@pytest.fixture()
def manager(session_factory) -> IndexerManager:
    return IndexerManager(session_factory=session_factory)


@pytest.fixture()
def index(manager):
    return manager.get(PRODUCT_STATS_INDEX)


@pytest.fixture()
def service(manager) -> ProductStatsService:
    return ProductStatsService(manager)


@pytest.fixture()
def scheduled(manager, index):
    manager.set_mode(PRODUCT_STATS_INDEX, IndexMode.SCHEDULED)
    return index


def seed_products(service: ProductStatsService, rows) -> None:
    """Insert ``(product_id, views, purchases, revenue)`` tuples."""
    for product_id, views, purchases, revenue in rows:
        service.create_product(product_id, views, purchases, revenue)
