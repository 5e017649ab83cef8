"""Persisted per-index mode and validity."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from stats_indexer.indexer.definitions import IndexMode
from stats_indexer.indexer.errors import TransientIOFailure
from stats_indexer.models.tables import IndexerState

logger = logging.getLogger(__name__)

STATUS_NEW = "new"
STATUS_VALID = "valid"
STATUS_INVALID = "invalid"
STATUS_WORKING = "working"


@dataclass
class StateSnapshot:
    index_name: str
    mode: IndexMode
    status: str
    last_full_reindex_at: Optional[datetime]
    last_changelog_run_at: Optional[datetime]


class IndexStateRepository:
    def __init__(self, index_name: str, session_factory, default_mode: IndexMode = IndexMode.IMMEDIATE):
        self.index_name = index_name
        self.session_factory = session_factory
        self.default_mode = default_mode

    def _load(self, s) -> IndexerState:
        row = s.get(IndexerState, self.index_name)
        if row is None:
            row = IndexerState(index_name=self.index_name, mode=self.default_mode.value, status=STATUS_NEW)
            s.add(row)
            s.flush()
        return row

    def _update(self, **fields) -> StateSnapshot:
        with self.session_factory() as s:
            try:
                row = self._load(s)
                for k, v in fields.items():
                    setattr(row, k, v)
                row.updated_at = datetime.utcnow()
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"[{self.index_name}] state update failed: {exc}") from exc
            return self._snapshot(row)

    def _snapshot(self, row: IndexerState) -> StateSnapshot:
        return StateSnapshot(
            index_name=row.index_name,
            mode=IndexMode.parse(row.mode),
            status=row.status,
            last_full_reindex_at=row.last_full_reindex_at,
            last_changelog_run_at=row.last_changelog_run_at,
        )

    def get(self) -> StateSnapshot:
        with self.session_factory() as s:
            try:
                row = s.get(IndexerState, self.index_name)
            except SQLAlchemyError as exc:
                raise TransientIOFailure(f"[{self.index_name}] state read failed: {exc}") from exc
            if row is None:
                return StateSnapshot(self.index_name, self.default_mode, STATUS_NEW, None, None)
            return self._snapshot(row)

    def mode(self) -> IndexMode:
        return self.get().mode

    def set_mode(self, mode: IndexMode) -> StateSnapshot:
        return self._update(mode=IndexMode.parse(mode).value)

    def mark_working(self) -> StateSnapshot:
        return self._update(status=STATUS_WORKING)

    def mark_valid(self, full_reindex: bool = False) -> StateSnapshot:
        fields = {"status": STATUS_VALID}
        if full_reindex:
            fields["last_full_reindex_at"] = datetime.utcnow()
        return self._update(**fields)

    def mark_invalid(self) -> StateSnapshot:
        return self._update(status=STATUS_INVALID)

    def mark_changelog_run(self) -> StateSnapshot:
        return self._update(last_changelog_run_at=datetime.utcnow())

    def reset(self) -> StateSnapshot:
        return self._update(status=STATUS_NEW, last_full_reindex_at=None)
