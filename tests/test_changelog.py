"""Tests for the changelog pending set."""

from __future__ import annotations

import threading

from stats_indexer.indexer.changelog import Changelog
from stats_indexer.indexer.errors import TransientIOFailure


def test_append_coalesces_duplicates(index):
    log = index.changelog
    log.append(7)
    log.append(7)
    log.append_many([7, 8, 8])
    assert log.pending_count() == 2
    assert log.pending_ids() == [7, 8]


def test_drain_returns_oldest_first_and_removes(index):
    log = index.changelog
    log.append_many([30, 10, 20])
    assert log.drain(2) == [30, 10]
    assert log.pending_ids() == [20]
    assert log.drain(10) == [20]
    assert log.drain(10) == []
    assert log.pending_count() == 0


def test_reappend_after_drain_is_pending_again(index):
    log = index.changelog
    log.append(5)
    assert log.drain() == [5]
    log.append(5)
    assert log.pending_ids() == [5]


def test_drain_with_non_positive_batch(index):
    index.changelog.append(1)
    assert index.changelog.drain(0) == []
    assert index.changelog.pending_count() == 1


def test_changelogs_are_scoped_per_index(index, session_factory):
    other = Changelog("other_index", session_factory)
    index.changelog.append(1)
    other.append(1)
    other.append(2)
    assert index.changelog.drain() == [1]
    assert other.pending_ids() == [1, 2]


def test_clear(index):
    index.changelog.append_many([1, 2, 3])
    assert index.changelog.clear() == 3
    assert index.changelog.pending_count() == 0


def test_append_many_empty_is_noop(index):
    assert index.changelog.append_many([]) == 0
    assert index.changelog.pending_count() == 0


def test_concurrent_drains_claim_each_id_once(index):
    log = index.changelog
    log.append_many(range(1, 401))
    claimed: list[int] = []
    guard = threading.Lock()

    def worker():
        for _ in range(1000):
            try:
                if log.pending_count() == 0:
                    return
                ids = log.drain(7)
            except TransientIOFailure:
                # sqlite busy under contention; the claim was rolled back
                continue
            with guard:
                claimed.extend(ids)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(claimed) == len(set(claimed))
    assert sorted(claimed) == list(range(1, 401))
