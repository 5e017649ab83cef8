"""Mode processor: routes row-change notifications by the index's mode.

Immediate mode reindexes on the caller's thread before returning. Scheduled
mode only records the id in the changelog; the scheduled runner indexes it
later. A failed immediate reindex never rolls back the source write.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from prometheus_client import Counter
from stats_indexer.indexer.action import IndexingAction, ReindexResult
from stats_indexer.indexer.changelog import Changelog
from stats_indexer.indexer.definitions import IndexMode
from stats_indexer.indexer.errors import IndexerError, TransientIOFailure
from stats_indexer.indexer.state import IndexStateRepository

logger = logging.getLogger(__name__)

NOTIFICATIONS = Counter('indexer_notifications_total', 'Row change notifications', ['index', 'outcome'])

INDEXED = "indexed"
RECORDED = "recorded"


@dataclass
class NotifyOutcome:
    mode: IndexMode
    outcome: str
    ids: list[int]
    result: Optional[ReindexResult] = None

    def as_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "outcome": self.outcome,
            "ids": self.ids,
            "result": self.result.as_dict() if self.result else None,
        }


class ModeProcessor:
    def __init__(
        self,
        index_name: str,
        action: IndexingAction,
        changelog: Changelog,
        state: IndexStateRepository,
        fallback_to_changelog: bool = True,
    ):
        self.index_name = index_name
        self.action = action
        self.changelog = changelog
        self.state = state
        self.fallback_to_changelog = fallback_to_changelog

    def is_scheduled(self) -> bool:
        return self.state.mode() is IndexMode.SCHEDULED

    def notify_row_changed(self, natural_id) -> NotifyOutcome:
        return self.notify_rows_changed([natural_id])

    def notify_rows_changed(self, natural_ids: Iterable, force_immediate: bool = False) -> NotifyOutcome:
        ids = [int(i) for i in natural_ids]
        mode = self.state.mode()
        if not ids:
            return NotifyOutcome(mode, INDEXED if mode is IndexMode.IMMEDIATE else RECORDED, [])
        if mode is IndexMode.SCHEDULED and not force_immediate:
            self.changelog.append_many(ids)
            NOTIFICATIONS.labels(index=self.index_name, outcome=RECORDED).inc(len(ids))
            logger.debug("[%s] recorded %d ids in changelog", self.index_name, len(ids))
            return NotifyOutcome(mode, RECORDED, ids)
        try:
            if len(ids) == 1:
                result = self.action.reindex_row(ids[0])
            else:
                result = self.action.reindex_list(ids)
        except IndexerError as exc:
            NOTIFICATIONS.labels(index=self.index_name, outcome="failed").inc(len(ids))
            logger.error("[%s] immediate reindex of %s failed, index is stale for these ids: %s", self.index_name, ids, exc)
            self._fallback(ids)
            raise
        NOTIFICATIONS.labels(index=self.index_name, outcome=INDEXED).inc(len(ids))
        return NotifyOutcome(mode, INDEXED, ids, result)

    def _fallback(self, ids: list[int]) -> None:
        if not self.fallback_to_changelog:
            return
        try:
            self.changelog.append_many(ids)
            logger.warning("[%s] queued %d ids in changelog for retry", self.index_name, len(ids))
        except TransientIOFailure:
            logger.exception("[%s] changelog fallback failed for ids %s", self.index_name, ids)
