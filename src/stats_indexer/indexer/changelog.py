"""Changelog of natural ids awaiting a scheduled reindex.

One pending row per (index, natural id): appending an id that is already
pending is a no-op. ``drain`` claims entries by deleting them and returning
exactly the rows this call removed, so concurrent drains never share an id.
The changelog does not track outcomes; callers re-append ids they failed to
process.
"""
from __future__ import annotations
import logging
from typing import Iterable
from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from prometheus_client import Counter, Gauge
from stats_indexer.indexer.errors import TransientIOFailure
from stats_indexer.models.tables import IndexChangelogEntry

logger = logging.getLogger(__name__)

CHANGELOG_APPENDED = Counter('indexer_changelog_appended_total', 'Ids appended to the changelog (before coalescing)', ['index'])
CHANGELOG_DRAINED = Counter('indexer_changelog_drained_total', 'Ids claimed from the changelog', ['index'])
CHANGELOG_PENDING = Gauge('indexer_changelog_pending', 'Pending changelog entries', ['index'])


class Changelog:
    def __init__(self, index_name: str, session_factory):
        self.index_name = index_name
        self.session_factory = session_factory

    def append(self, natural_id) -> None:
        self.append_many([natural_id])

    def append_many(self, natural_ids: Iterable) -> int:
        ids = list(dict.fromkeys(int(i) for i in natural_ids))
        if not ids:
            return 0
        with self.session_factory() as s:
            try:
                for natural_id in ids:
                    self._insert_if_absent(s, natural_id)
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"[{self.index_name}] changelog append failed: {exc}") from exc
        CHANGELOG_APPENDED.labels(index=self.index_name).inc(len(ids))
        return len(ids)

    def _insert_if_absent(self, s: Session, natural_id: int) -> None:
        values = {"index_name": self.index_name, "natural_id": natural_id}
        dialect = s.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(IndexChangelogEntry).values(**values).on_conflict_do_nothing(
                index_elements=["index_name", "natural_id"]
            )
            s.execute(stmt)
            return
        exists = s.scalar(
            select(IndexChangelogEntry.version).where(
                IndexChangelogEntry.index_name == self.index_name,
                IndexChangelogEntry.natural_id == natural_id,
            )
        )
        if exists is None:
            s.add(IndexChangelogEntry(**values))
            s.flush()

    def drain(self, max_batch: int = 1000) -> list[int]:
        """Claim up to ``max_batch`` pending ids, oldest first."""
        if max_batch <= 0:
            return []
        with self.session_factory() as s:
            try:
                q = (
                    select(IndexChangelogEntry.version)
                    .where(IndexChangelogEntry.index_name == self.index_name)
                    .order_by(IndexChangelogEntry.version)
                    .limit(max_batch)
                )
                if s.get_bind().dialect.name == "postgresql":
                    q = q.with_for_update(skip_locked=True)
                versions = list(s.scalars(q))
                if not versions:
                    s.commit()
                    return []
                claimed = s.execute(
                    delete(IndexChangelogEntry)
                    .where(IndexChangelogEntry.version.in_(versions))
                    .returning(IndexChangelogEntry.version, IndexChangelogEntry.natural_id)
                ).all()
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"[{self.index_name}] changelog drain failed: {exc}") from exc
        ids = [natural_id for _version, natural_id in sorted(claimed)]
        CHANGELOG_DRAINED.labels(index=self.index_name).inc(len(ids))
        logger.debug("[%s] drained %d changelog entries", self.index_name, len(ids))
        return ids

    def pending_count(self) -> int:
        with self.session_factory() as s:
            try:
                count = s.scalar(
                    select(func.count()).select_from(IndexChangelogEntry).where(
                        IndexChangelogEntry.index_name == self.index_name
                    )
                ) or 0
            except SQLAlchemyError as exc:
                raise TransientIOFailure(f"[{self.index_name}] changelog count failed: {exc}") from exc
        CHANGELOG_PENDING.labels(index=self.index_name).set(count)
        return count

    def pending_ids(self, limit: int | None = None) -> list[int]:
        q = (
            select(IndexChangelogEntry.natural_id)
            .where(IndexChangelogEntry.index_name == self.index_name)
            .order_by(IndexChangelogEntry.version)
        )
        if limit is not None:
            q = q.limit(limit)
        with self.session_factory() as s:
            return list(s.scalars(q))

    def clear(self) -> int:
        with self.session_factory() as s:
            try:
                removed = s.execute(
                    delete(IndexChangelogEntry).where(IndexChangelogEntry.index_name == self.index_name)
                ).rowcount or 0
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"[{self.index_name}] changelog clear failed: {exc}") from exc
        CHANGELOG_PENDING.labels(index=self.index_name).set(0)
        return removed
