"""Tests for the administrative control surface."""

from __future__ import annotations

import pytest

from stats_indexer.indexer.definitions import PRODUCT_STATS_INDEX
from stats_indexer.indexer.errors import ConfigurationError, ConfirmationRequired
from stats_indexer.indexer.manager import IndexerManager

from conftest import seed_products


def test_fresh_index_status(manager):
    status = manager.status(PRODUCT_STATS_INDEX)
    assert status["mode"] == "immediate"
    assert status["health"] == "never_built"
    assert status["source_count"] == 0
    assert status["index_count"] == 0
    assert status["pending_changelog_count"] == 0


def test_status_after_full_reindex(manager, service):
    seed_products(service, [(1, 10, 1, 5.0), (2, 20, 2, 10.0)])
    manager.trigger_full_reindex(PRODUCT_STATS_INDEX)
    status = manager.status(PRODUCT_STATS_INDEX)
    assert status["status"] == "valid"
    assert status["health"] == "up_to_date"
    assert status["source_count"] == status["index_count"] == 2
    assert status["last_full_reindex_at"] is not None


def test_pending_changes_make_index_stale(manager, service):
    seed_products(service, [(1, 10, 1, 5.0)])
    manager.trigger_full_reindex(PRODUCT_STATS_INDEX)
    status = manager.set_mode(PRODUCT_STATS_INDEX, "scheduled")
    assert status["mode"] == "scheduled"
    service.increment_view_count(1, 5)
    status = manager.status(PRODUCT_STATS_INDEX)
    assert status["pending_changelog_count"] == 1
    assert status["health"] == "stale"


def test_invalidate(manager):
    assert manager.invalidate(PRODUCT_STATS_INDEX)["health"] == "invalid"


def test_mode_is_persisted(manager, session_factory):
    manager.set_mode(PRODUCT_STATS_INDEX, "update_by_schedule")
    fresh = IndexerManager(session_factory=session_factory)
    assert fresh.status(PRODUCT_STATS_INDEX)["mode"] == "scheduled"


def test_set_mode_rejects_unknown_mode(manager):
    with pytest.raises(ConfigurationError):
        manager.set_mode(PRODUCT_STATS_INDEX, "sometimes")


def test_unknown_index(manager):
    with pytest.raises(ConfigurationError):
        manager.status("orders")


def test_partial_reindex_respects_mode(manager, service, index):
    seed_products(service, [(1, 10, 1, 5.0), (2, 20, 2, 10.0)])
    manager.set_mode(PRODUCT_STATS_INDEX, "scheduled")
    index.store.truncate()
    outcome = manager.trigger_partial_reindex(PRODUCT_STATS_INDEX, [1, 2])
    assert outcome.outcome == "recorded"
    assert index.store.count() == 0
    outcome = manager.trigger_partial_reindex(PRODUCT_STATS_INDEX, [1, 2], force_immediate=True)
    assert outcome.outcome == "indexed"
    assert index.store.count() == 2


def test_clear_all_requires_confirmation(manager, service):
    seed_products(service, [(1, 10, 1, 5.0)])
    with pytest.raises(ConfirmationRequired):
        manager.clear_all(PRODUCT_STATS_INDEX)
    with pytest.raises(ConfirmationRequired):
        manager.clear_all(PRODUCT_STATS_INDEX, confirm="yes")
    assert manager.status(PRODUCT_STATS_INDEX)["source_count"] == 1


def test_clear_all_with_confirmation(manager, service, index):
    seed_products(service, [(1, 10, 1, 5.0), (2, 20, 0, 0.0)])
    index.changelog.append(2)
    result = manager.clear_all(PRODUCT_STATS_INDEX, confirm=PRODUCT_STATS_INDEX)
    assert result == {"index": PRODUCT_STATS_INDEX, "source_deleted": 2, "index_deleted": 2, "changelog_deleted": 1}
    status = manager.status(PRODUCT_STATS_INDEX)
    assert status["source_count"] == status["index_count"] == status["pending_changelog_count"] == 0
    assert status["health"] == "never_built"


def test_clear_all_with_force(manager, service):
    seed_products(service, [(1, 10, 1, 5.0)])
    assert manager.clear_all(PRODUCT_STATS_INDEX, force=True)["source_deleted"] == 1


def test_statuses_lists_every_index(manager):
    assert [s["index"] for s in manager.statuses()] == [PRODUCT_STATS_INDEX]


def test_immediate_writes_count_as_built(manager, service):
    seed_products(service, [(1, 10, 1, 5.0), (2, 20, 2, 10.0)])
    status = manager.status(PRODUCT_STATS_INDEX)
    assert status["status"] == "new"
    assert status["index_count"] == 2
    assert status["health"] == "up_to_date"


def test_scheduled_backlog_is_stale_without_full_reindex(manager, service):
    seed_products(service, [(1, 10, 1, 5.0)])
    manager.set_mode(PRODUCT_STATS_INDEX, "scheduled")
    service.increment_view_count(1, 5)
    status = manager.status(PRODUCT_STATS_INDEX)
    assert status["index_count"] == 1
    assert status["pending_changelog_count"] == 1
    assert status["health"] == "stale"
    manager.process_changelogs()
    assert manager.status(PRODUCT_STATS_INDEX)["health"] == "up_to_date"
