"""Scheduled runner: drains changelogs into partial reindexes.

One tick visits every logical index in scheduled mode, plus immediate-mode
indexes that still hold changelog entries (ids queued after a failed
synchronous reindex or left over from a mode switch). An index whose lock is
held by another reindex is skipped until the next tick.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, asdict
from typing import Callable, Iterable
from prometheus_client import Counter, Gauge
from stats_indexer.indexer.definitions import IndexMode
from stats_indexer.indexer.errors import IndexBusy, IndexerError, TransientIOFailure
from stats_indexer.indexer.logical import LogicalIndex
from stats_indexer.indexer.state import STATUS_INVALID, STATUS_WORKING

logger = logging.getLogger(__name__)

RUNNER_TICKS = Counter('indexer_runner_ticks_total', 'Scheduled runner ticks')
RUNNER_SKIPPED = Counter('indexer_runner_skipped_total', 'Indexes skipped because a reindex was in progress', ['index'])
RUNNER_REQUEUED = Counter('indexer_runner_requeued_total', 'Drained ids re-appended after a failed reindex', ['index'])
RUNNER_LAST_RUN = Gauge('indexer_runner_last_run_timestamp', 'Unix time of the last scheduled run', ['index'])


@dataclass
class IndexRunReport:
    index_name: str
    mode: str
    full_reindex: bool = False
    batches: int = 0
    drained: int = 0
    indexed: int = 0
    missing: int = 0
    requeued: int = 0
    skipped: str | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


class ScheduledRunner:
    def __init__(
        self,
        indexes: Callable[[], Iterable[LogicalIndex]],
        batch_size: int = 1000,
        max_batches: int = 10,
        reindex_invalid: bool = True,
    ):
        self._indexes = indexes
        self.batch_size = max(1, batch_size)
        self.max_batches = max(1, max_batches)
        self.reindex_invalid = reindex_invalid
        self.last_run_at: float | None = None

    def run_once(self) -> list[IndexRunReport]:
        RUNNER_TICKS.inc()
        reports = []
        for idx in self._indexes():
            report = self._run_index(idx)
            if report is not None:
                reports.append(report)
        self.last_run_at = time.time()
        return reports

    def _due(self, idx: LogicalIndex, mode: IndexMode) -> bool:
        if mode is IndexMode.SCHEDULED:
            return True
        return idx.changelog.pending_count() > 0

    def _run_index(self, idx: LogicalIndex) -> IndexRunReport | None:
        try:
            state = idx.state.get()
            if not self._due(idx, state.mode):
                return None
        except TransientIOFailure as exc:
            # other indexes still run this tick
            logger.error("[%s] could not read index state, retrying next run: %s", idx.name, exc)
            return IndexRunReport(idx.name, "unknown", error=str(exc))
        report = IndexRunReport(idx.name, state.mode.value)
        try:
            with idx.action.lock.hold(blocking=False):
                state = idx.state.get()
                if state.status == STATUS_WORKING:
                    # nobody holds the lock, so the rebuild that set this died midway
                    logger.warning("[%s] found abandoned full reindex, marking index invalid", idx.name)
                    state = idx.state.mark_invalid()
                if self.reindex_invalid and state.status == STATUS_INVALID and state.mode is IndexMode.SCHEDULED:
                    logger.info("[%s] index invalid, running full reindex", idx.name)
                    report.full_reindex = True
                    idx.action.apply_full()
                self._drain(idx, report)
                idx.state.mark_changelog_run()
        except IndexBusy:
            RUNNER_SKIPPED.labels(index=idx.name).inc()
            report.skipped = "busy"
            logger.info("[%s] reindex in progress, skipping this run", idx.name)
            return report
        except IndexerError as exc:
            report.error = str(exc)
            logger.error("[%s] scheduled run failed: %s", idx.name, exc)
        RUNNER_LAST_RUN.labels(index=idx.name).set(time.time())
        return report

    def _drain(self, idx: LogicalIndex, report: IndexRunReport) -> None:
        for _ in range(self.max_batches):
            ids = idx.changelog.drain(self.batch_size)
            if not ids:
                return
            report.batches += 1
            try:
                result = idx.action.apply_list(ids)
            except IndexerError as exc:
                self._requeue(idx, ids, report)
                report.error = str(exc)
                return
            report.drained += len(ids)
            report.indexed += result.indexed
            report.missing += len(result.missing)
            if len(ids) < self.batch_size:
                return

    def _requeue(self, idx: LogicalIndex, ids: list[int], report: IndexRunReport) -> None:
        try:
            idx.changelog.append_many(ids)
        except TransientIOFailure:
            logger.critical("[%s] could not re-queue %d drained ids: %s", idx.name, len(ids), ids)
            raise
        report.requeued += len(ids)
        RUNNER_REQUEUED.labels(index=idx.name).inc(len(ids))
        logger.warning("[%s] re-queued %d ids for the next run", idx.name, len(ids))
