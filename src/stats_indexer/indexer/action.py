"""Indexing action: full, list and single-row reindex for one logical index.

All entry points are idempotent. ``reindex_*`` take the per-index lock;
``apply_*`` assume the caller already holds it (the scheduled runner claims
the lock before draining the changelog).
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Iterable
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from prometheus_client import Counter, Histogram
from stats_indexer.indexer.definitions import IndexDefinition
from stats_indexer.indexer.errors import TransientIOFailure
from stats_indexer.indexer.state import IndexStateRepository
from stats_indexer.indexer.store import IndexStore

logger = logging.getLogger(__name__)

REINDEX_RUNS = Counter('indexer_reindex_runs_total', 'Reindex invocations', ['index', 'granularity'])
REINDEX_FAILURES = Counter('indexer_reindex_failures_total', 'Failed reindex invocations', ['index', 'granularity'])
REINDEX_ROWS = Counter('indexer_rows_indexed_total', 'Rows written to index tables', ['index'])
REINDEX_DURATION = Histogram('indexer_reindex_duration_seconds', 'Reindex runtime', ['index', 'granularity'], buckets=(0.01,0.05,0.1,0.25,0.5,1,2,5,10,30,60,300))

FULL = "full"
LIST = "list"
ROW = "row"


@dataclass
class ReindexResult:
    index_name: str
    granularity: str
    requested: int = 0
    indexed: int = 0
    missing: list[int] = field(default_factory=list)
    duration_seconds: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class IndexingAction:
    def __init__(
        self,
        definition: IndexDefinition,
        store: IndexStore,
        state: IndexStateRepository,
        lock,
        session_factory,
        batch_size: int = 500,
        lock_wait_seconds: float | None = 30.0,
    ):
        self.definition = definition
        self.store = store
        self.state = state
        self.lock = lock
        self.session_factory = session_factory
        self.batch_size = max(1, batch_size)
        self.lock_wait_seconds = lock_wait_seconds

    @property
    def index_name(self) -> str:
        return self.definition.name

    # -- locked entry points -------------------------------------------

    def reindex_full(self) -> ReindexResult:
        with self.lock.hold(timeout=self.lock_wait_seconds):
            return self.apply_full()

    def reindex_list(self, ids: Iterable) -> ReindexResult:
        ids = list(ids)
        if not ids:
            return ReindexResult(self.index_name, LIST)
        with self.lock.hold(timeout=self.lock_wait_seconds):
            return self.apply_list(ids)

    def reindex_row(self, natural_id) -> ReindexResult:
        logger.info("[%s] single row reindex for id %s", self.index_name, natural_id)
        result = self.reindex_list([natural_id])
        result.granularity = ROW
        return result

    # -- bodies (caller holds the lock) --------------------------------

    def apply_full(self) -> ReindexResult:
        logger.info("[%s] starting FULL reindex", self.index_name)
        REINDEX_RUNS.labels(index=self.index_name, granularity=FULL).inc()
        start = time.time()
        result = ReindexResult(self.index_name, FULL)
        try:
            self.state.mark_working()
            self.store.truncate()
            for page in self._iter_source_pages():
                result.requested += len(page)
                rows = [self.definition.derive(r) for r in page]
                result.indexed += self.store.bulk_insert(rows)
        except (TransientIOFailure, SQLAlchemyError) as exc:
            self._on_failure(FULL, exc, mark_invalid=True)
            if isinstance(exc, SQLAlchemyError):
                raise TransientIOFailure(f"[{self.index_name}] full reindex failed: {exc}") from exc
            raise
        self.state.mark_valid(full_reindex=True)
        result.duration_seconds = time.time() - start
        REINDEX_ROWS.labels(index=self.index_name).inc(result.indexed)
        REINDEX_DURATION.labels(index=self.index_name, granularity=FULL).observe(result.duration_seconds)
        logger.info("[%s] FULL reindex completed: %d rows in %.3fs", self.index_name, result.indexed, result.duration_seconds)
        return result

    def apply_list(self, ids: Iterable) -> ReindexResult:
        wanted = list(dict.fromkeys(int(i) for i in ids))
        result = ReindexResult(self.index_name, LIST, requested=len(wanted))
        if not wanted:
            return result
        logger.info("[%s] starting PARTIAL reindex for %d ids", self.index_name, len(wanted))
        REINDEX_RUNS.labels(index=self.index_name, granularity=LIST).inc()
        start = time.time()
        key_col = self.definition.source_key_column
        found: set[int] = set()
        try:
            for chunk in _chunks(wanted, self.batch_size):
                with self.session_factory() as s:
                    try:
                        rows = s.execute(
                            select(*self.definition.source_columns()).where(key_col.in_(chunk))
                        ).mappings().all()
                        for row in rows:
                            self.store.upsert(self.definition.derive(row), session=s)
                            found.add(int(row[self.definition.key]))
                        s.commit()
                    except SQLAlchemyError:
                        s.rollback()
                        raise
        except SQLAlchemyError as exc:
            self._on_failure(LIST, exc)
            raise TransientIOFailure(f"[{self.index_name}] partial reindex failed: {exc}") from exc
        # ids deleted from the source since they were queued are skipped
        result.missing = [i for i in wanted if i not in found]
        result.indexed = len(found)
        result.duration_seconds = time.time() - start
        REINDEX_ROWS.labels(index=self.index_name).inc(result.indexed)
        REINDEX_DURATION.labels(index=self.index_name, granularity=LIST).observe(result.duration_seconds)
        if result.missing:
            logger.info("[%s] skipped %d ids absent from source", self.index_name, len(result.missing))
        logger.info("[%s] PARTIAL reindex completed: %d rows", self.index_name, result.indexed)
        return result

    def _iter_source_pages(self):
        """Keyset-paginate the source table so no read cursor stays open across writes."""
        key_col = self.definition.source_key_column
        last = None
        while True:
            q = select(*self.definition.source_columns()).order_by(key_col).limit(self.batch_size)
            if last is not None:
                q = q.where(key_col > last)
            with self.session_factory() as s:
                page = s.execute(q).mappings().all()
            if not page:
                return
            yield page
            last = page[-1][self.definition.key]
            if len(page) < self.batch_size:
                return

    def _on_failure(self, granularity: str, exc: Exception, mark_invalid: bool = False) -> None:
        REINDEX_FAILURES.labels(index=self.index_name, granularity=granularity).inc()
        logger.error("[%s] %s reindex failed: %s", self.index_name, granularity.upper(), exc)
        if mark_invalid:
            try:
                self.state.mark_invalid()
            except TransientIOFailure:
                logger.exception("[%s] could not mark index invalid", self.index_name)
