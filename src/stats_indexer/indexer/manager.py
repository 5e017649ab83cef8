"""Administrative control surface over all registered logical indexes."""
from __future__ import annotations
import logging
from functools import lru_cache
from typing import Iterable
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from stats_indexer.config import Settings, get_settings
from stats_indexer.infrastructure import db
from stats_indexer.indexer.action import ReindexResult
from stats_indexer.indexer.definitions import IndexMode, definition_names, get_definition
from stats_indexer.indexer.errors import ConfigurationError, ConfirmationRequired, TransientIOFailure
from stats_indexer.indexer.logical import LogicalIndex, build_logical_index
from stats_indexer.indexer.processor import NotifyOutcome
from stats_indexer.indexer.runner import IndexRunReport, ScheduledRunner
from stats_indexer.indexer.state import STATUS_INVALID, STATUS_NEW, STATUS_WORKING

logger = logging.getLogger(__name__)

HEALTH_NEVER_BUILT = "never_built"
HEALTH_INVALID = "invalid"
HEALTH_WORKING = "working"
HEALTH_STALE = "stale"
HEALTH_UP_TO_DATE = "up_to_date"


class IndexerManager:
    def __init__(self, session_factory=None, settings: Settings | None = None, names: Iterable[str] | None = None):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or db.get_session_factory()
        self._indexes: dict[str, LogicalIndex] = {}
        for name in (names or definition_names()):
            self._indexes[name] = build_logical_index(get_definition(name), self.session_factory, self.settings)
        self.runner = ScheduledRunner(
            lambda: list(self._indexes.values()),
            batch_size=self.settings.changelog_batch_size,
            max_batches=self.settings.changelog_max_batches_per_run,
            reindex_invalid=self.settings.reindex_invalid_on_schedule,
        )

    def names(self) -> list[str]:
        return sorted(self._indexes)

    def get(self, name: str) -> LogicalIndex:
        try:
            return self._indexes[name]
        except KeyError:
            raise ConfigurationError(f"unknown logical index: {name!r}") from None

    def set_mode(self, name: str, mode: "str | IndexMode") -> dict:
        idx = self.get(name)
        new_mode = IndexMode.parse(mode)
        previous = idx.state.mode()
        idx.state.set_mode(new_mode)
        if previous is not new_mode:
            logger.info("[%s] mode changed %s -> %s", name, previous.value, new_mode.value)
        return self.status(name)

    def trigger_full_reindex(self, name: str) -> ReindexResult:
        return self.get(name).action.reindex_full()

    def trigger_partial_reindex(self, name: str, ids: Iterable, force_immediate: bool = False) -> NotifyOutcome:
        return self.get(name).processor.notify_rows_changed(ids, force_immediate=force_immediate)

    def invalidate(self, name: str) -> dict:
        """Flag the index for a full rebuild on the next scheduled run."""
        idx = self.get(name)
        idx.state.mark_invalid()
        logger.info("[%s] marked invalid; next scheduled run rebuilds it", name)
        return self.status(name)

    def clear_all(self, name: str, force: bool = False, confirm: str | None = None) -> dict:
        """Delete every source row, index row and pending entry for ``name``.

        Requires ``force`` or ``confirm`` equal to the index name.
        """
        idx = self.get(name)
        if not force and confirm != name:
            raise ConfirmationRequired(f"clearing {name} deletes all source and index data; confirm with the index name or force")
        with idx.action.lock.hold(timeout=idx.action.lock_wait_seconds):
            source_model = idx.definition.source_model
            with self.session_factory() as s:
                try:
                    source_count = s.scalar(select(func.count()).select_from(source_model)) or 0
                    s.execute(delete(source_model))
                    s.commit()
                except SQLAlchemyError as exc:
                    s.rollback()
                    raise TransientIOFailure(f"[{name}] clearing source failed: {exc}") from exc
            index_count = idx.store.truncate()
            pending = idx.changelog.clear()
            idx.state.reset()
        logger.warning("[%s] cleared %d source rows, %d index rows, %d pending entries", name, source_count, index_count, pending)
        return {"index": name, "source_deleted": source_count, "index_deleted": index_count, "changelog_deleted": pending}

    def status(self, name: str) -> dict:
        idx = self.get(name)
        state = idx.state.get()
        source_model = idx.definition.source_model
        with self.session_factory() as s:
            try:
                source_count = s.scalar(select(func.count()).select_from(source_model)) or 0
            except SQLAlchemyError as exc:
                raise TransientIOFailure(f"[{name}] source count failed: {exc}") from exc
        index_count = idx.store.count()
        pending = idx.changelog.pending_count()
        return {
            "index": name,
            "mode": state.mode.value,
            "status": state.status,
            "health": _health(state.status, pending, index_count),
            "source_count": source_count,
            "index_count": index_count,
            "pending_changelog_count": pending,
            "last_full_reindex_at": state.last_full_reindex_at,
            "last_changelog_run_at": state.last_changelog_run_at,
        }

    def statuses(self) -> list[dict]:
        return [self.status(n) for n in self.names()]

    def process_changelogs(self) -> list[IndexRunReport]:
        return self.runner.run_once()


def _health(status: str, pending: int, index_count: int) -> str:
    if status == STATUS_WORKING:
        return HEALTH_WORKING
    if status == STATUS_INVALID:
        return HEALTH_INVALID
    # immediate writes and drained changelogs populate a never-rebuilt index
    if status == STATUS_NEW and index_count == 0 and pending == 0:
        return HEALTH_NEVER_BUILT
    if pending > 0:
        return HEALTH_STALE
    return HEALTH_UP_TO_DATE


@lru_cache
def get_manager() -> IndexerManager:
    return IndexerManager()


def reset_manager():
    """Drop the cached manager (tests swap engines between cases)."""
    get_manager.cache_clear()
