"""Index store: the derived table behind one logical index."""
from __future__ import annotations
import logging
from typing import Iterable, Optional
from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from stats_indexer.indexer.calculator import PopularityTier, TIER_ORDER
from stats_indexer.indexer.definitions import IndexDefinition
from stats_indexer.indexer.errors import NotFound, TransientIOFailure, ConfigurationError

logger = logging.getLogger(__name__)

ORDER_CONVERSION = "conversion_rate"
ORDER_VIEWS = "view_count"
_ORDERINGS = (ORDER_CONVERSION, ORDER_VIEWS)


def row_to_dict(row) -> dict:
    return {c.key: getattr(row, c.key) for c in row.__table__.columns}


class IndexStore:
    def __init__(self, definition: IndexDefinition, session_factory):
        self.definition = definition
        self.session_factory = session_factory

    @property
    def model(self):
        return self.definition.index_model

    # -- writes ---------------------------------------------------------

    def truncate(self) -> int:
        with self.session_factory() as s:
            try:
                removed = s.execute(delete(self.model)).rowcount or 0
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"truncate {self.model.__tablename__} failed: {exc}") from exc
        logger.info("[%s] truncated index table (%d rows)", self.definition.name, removed)
        return removed

    def bulk_insert(self, rows: list[dict]) -> int:
        if not rows:
            return 0
        with self.session_factory() as s:
            try:
                s.bulk_insert_mappings(self.model, rows)
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"bulk insert into {self.model.__tablename__} failed: {exc}") from exc
        return len(rows)

    def upsert(self, row: dict, session: Optional[Session] = None) -> None:
        if session is not None:
            self._upsert(session, row)
            return
        with self.session_factory() as s:
            try:
                self._upsert(s, row)
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"upsert {row.get(self.definition.key)} failed: {exc}") from exc

    def _upsert(self, s: Session, row: dict) -> None:
        dialect = s.get_bind().dialect.name
        key = self.definition.key
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(self.model).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=[key],
                set_={k: stmt.excluded[k] for k in row if k != key},
            )
            s.execute(stmt)
        else:
            s.merge(self.model(**row))

    # -- reads ----------------------------------------------------------

    def find(self, natural_id) -> Optional[dict]:
        with self.session_factory() as s:
            try:
                row = s.get(self.model, natural_id)
            except SQLAlchemyError as exc:
                raise TransientIOFailure(f"lookup {natural_id} failed: {exc}") from exc
            return row_to_dict(row) if row is not None else None

    def get(self, natural_id) -> dict:
        row = self.find(natural_id)
        if row is None:
            raise NotFound(natural_id, what="indexed row")
        return row

    def count(self) -> int:
        with self.session_factory() as s:
            try:
                return s.scalar(select(func.count()).select_from(self.model)) or 0
            except SQLAlchemyError as exc:
                raise TransientIOFailure(f"count failed: {exc}") from exc

    def scan(
        self,
        tier: str | None = None,
        order_by: str = ORDER_CONVERSION,
        limit: int | None = None,
        min_purchases: int | None = None,
    ) -> list[dict]:
        if order_by not in _ORDERINGS:
            raise ConfigurationError(f"unsupported ordering: {order_by!r}")
        key_col = self.definition.index_key_column
        q = select(self.model)
        if tier is not None:
            try:
                tier_value = PopularityTier(tier).value
            except ValueError:
                raise ConfigurationError(f"unknown popularity tier: {tier!r}") from None
            q = q.where(self.model.popularity_tier == tier_value)
        if min_purchases is not None:
            q = q.where(self.model.purchase_count >= min_purchases)
        # natural id as tie-breaker keeps results stable
        q = q.order_by(getattr(self.model, order_by).desc(), key_col.asc())
        if limit is not None:
            q = q.limit(limit)
        with self.session_factory() as s:
            try:
                return [row_to_dict(r) for r in s.scalars(q)]
            except SQLAlchemyError as exc:
                raise TransientIOFailure(f"scan failed: {exc}") from exc

    def top_by_tier(self, tier: str, limit: int = 10) -> list[dict]:
        return self.scan(tier=tier, order_by=ORDER_VIEWS, limit=limit)

    def top_by_conversion(self, limit: int = 10) -> list[dict]:
        return self.scan(order_by=ORDER_CONVERSION, limit=limit, min_purchases=1)

    def summary_by_tier(self) -> list[dict]:
        m = self.model
        q = select(
            m.popularity_tier,
            func.count(),
            func.avg(m.conversion_rate),
            func.sum(m.revenue),
        ).group_by(m.popularity_tier)
        with self.session_factory() as s:
            try:
                rows = {tier: (cnt, avg_conv, total) for tier, cnt, avg_conv, total in s.execute(q)}
            except SQLAlchemyError as exc:
                raise TransientIOFailure(f"tier summary failed: {exc}") from exc
        summary = []
        for tier in TIER_ORDER:
            if tier.value not in rows:
                continue
            cnt, avg_conv, total = rows[tier.value]
            summary.append({
                "tier": tier.value,
                "count": int(cnt),
                "avg_conversion": round(float(avg_conv or 0.0), 2),
                "total_revenue": round(float(total or 0.0), 2),
            })
        return summary

    def snapshot(self, exclude: Iterable[str] = ("indexed_at",)) -> dict:
        """All rows keyed by natural id, minus volatile columns."""
        skip = set(exclude)
        with self.session_factory() as s:
            rows = s.scalars(select(self.model)).all()
        return {
            getattr(r, self.definition.key): {k: v for k, v in row_to_dict(r).items() if k not in skip}
            for r in rows
        }
