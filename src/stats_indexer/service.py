"""Source mutation API for product statistics.

Every write commits to the source table first and then notifies the mode
processor explicitly. An indexing failure after the commit is raised to the
caller; the counters stay incremented.
"""
from __future__ import annotations
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping, Optional, Tuple
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from prometheus_client import Counter
from stats_indexer.indexer.definitions import PRODUCT_STATS_INDEX
from stats_indexer.indexer.errors import AlreadyExists, ConfigurationError, NotFound, TransientIOFailure
from stats_indexer.indexer.manager import IndexerManager, get_manager
from stats_indexer.indexer.processor import NotifyOutcome
from stats_indexer.models.tables import ProductStats

logger = logging.getLogger(__name__)

SOURCE_MUTATIONS = Counter('product_stats_mutations_total', 'Source table mutations', ['operation'])

INTEGER_COUNTERS = ("view_count", "purchase_count")

Update = Tuple[int, Mapping[str, float]]


@dataclass
class BatchResult:
    updated: int
    product_ids: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    notification: Optional[NotifyOutcome] = None

    def as_dict(self) -> dict:
        return {
            "updated": self.updated,
            "product_ids": self.product_ids,
            "skipped": self.skipped,
            "notification": self.notification.as_dict() if self.notification else None,
        }


class ProductStatsService:
    def __init__(self, manager: IndexerManager | None = None, index_name: str = PRODUCT_STATS_INDEX):
        self.manager = manager or get_manager()
        self.index = self.manager.get(index_name)
        self.session_factory = self.manager.session_factory

    @property
    def counters(self) -> tuple[str, ...]:
        return self.index.definition.counters

    def _validate(self, deltas: Mapping[str, float]) -> dict:
        clean = {}
        for name, value in deltas.items():
            if name not in self.counters:
                raise ConfigurationError(f"unknown counter: {name!r}")
            if value is None:
                continue
            if value < 0:
                raise ConfigurationError(f"counter {name} can only increase (got {value})")
            clean[name] = int(value) if name in INTEGER_COUNTERS else float(value)
        return clean

    def _apply(self, s: Session, product_id: int, deltas: dict) -> bool:
        values = {name: getattr(ProductStats, name) + delta for name, delta in deltas.items()}
        values["updated_at"] = datetime.utcnow()
        res = s.execute(update(ProductStats).where(ProductStats.product_id == product_id).values(**values))
        return (res.rowcount or 0) > 0

    def create_product(self, product_id: int, view_count: int = 0, purchase_count: int = 0, revenue: float = 0.0) -> NotifyOutcome:
        self._validate({"view_count": view_count, "purchase_count": purchase_count, "revenue": revenue})
        with self.session_factory() as s:
            try:
                s.add(ProductStats(product_id=product_id, view_count=view_count, purchase_count=purchase_count, revenue=revenue))
                s.commit()
            except IntegrityError:
                s.rollback()
                raise AlreadyExists(f"product {product_id} already exists") from None
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"create product {product_id} failed: {exc}") from exc
        SOURCE_MUTATIONS.labels(operation="create").inc()
        logger.info("product %s created", product_id)
        return self.index.processor.notify_row_changed(product_id)

    def get_source(self, product_id: int) -> dict:
        with self.session_factory() as s:
            row = s.scalar(select(ProductStats).where(ProductStats.product_id == product_id))
            if row is None:
                raise NotFound(product_id)
            return {
                "entity_id": row.entity_id,
                "product_id": row.product_id,
                "view_count": row.view_count,
                "purchase_count": row.purchase_count,
                "revenue": row.revenue,
            }

    def increment_counters(self, product_id: int, deltas: Mapping[str, float]) -> NotifyOutcome:
        clean = self._validate(deltas)
        with self.session_factory() as s:
            try:
                found = self._apply(s, product_id, clean) if clean else s.scalar(
                    select(ProductStats.entity_id).where(ProductStats.product_id == product_id)
                ) is not None
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"increment for product {product_id} failed: {exc}") from exc
        if not found:
            logger.warning("product %s not found in stats table", product_id)
            raise NotFound(product_id)
        SOURCE_MUTATIONS.labels(operation="increment").inc()
        outcome = self.index.processor.notify_row_changed(product_id)
        logger.info("product %s counters incremented %s (mode: %s)", product_id, clean, outcome.mode.value)
        return outcome

    def increment_view_count(self, product_id: int, increment_by: int = 1) -> NotifyOutcome:
        return self.increment_counters(product_id, {"view_count": increment_by})

    def record_purchase(self, product_id: int, revenue: float) -> NotifyOutcome:
        return self.increment_counters(product_id, {"purchase_count": 1, "revenue": revenue})

    def apply_batch(self, updates: Iterable[Update], force_immediate: bool = False) -> BatchResult:
        """Apply many increments in one transaction, then notify once.

        Products that do not exist and updates without a positive delta are
        skipped, not errors.
        """
        prepared = [(int(pid), self._validate(deltas)) for pid, deltas in updates]
        updated: list[int] = []
        skipped: list[int] = []
        with self.session_factory() as s:
            try:
                for product_id, deltas in prepared:
                    positive = {k: v for k, v in deltas.items() if v > 0}
                    if not positive or not self._apply(s, product_id, positive):
                        skipped.append(product_id)
                        continue
                    updated.append(product_id)
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"batch update failed: {exc}") from exc
        SOURCE_MUTATIONS.labels(operation="batch").inc()
        result = BatchResult(len(updated), list(dict.fromkeys(updated)), skipped)
        if result.product_ids:
            result.notification = self.index.processor.notify_rows_changed(result.product_ids, force_immediate=force_immediate)
            logger.info(
                "batch updated %d products (mode: %s)",
                result.updated,
                "forced" if force_immediate else result.notification.mode.value,
            )
        return result

    def generate_sample_data(self, count: int = 100, start_id: int = 1001, seed: int | None = None, batch_size: int = 100) -> BatchResult:
        """Insert or overwrite ``count`` random products starting at ``start_id``."""
        rng = random.Random(seed)
        ids: list[int] = []
        with self.session_factory() as s:
            try:
                for i in range(count):
                    product_id = start_id + i
                    view_count = rng.randint(0, 2000)
                    purchase_count = rng.randint(0, int(view_count * 0.3))  # max 30% conversion
                    revenue = float(purchase_count * rng.randint(10, 500))
                    row = s.scalar(select(ProductStats).where(ProductStats.product_id == product_id))
                    if row is None:
                        s.add(ProductStats(product_id=product_id, view_count=view_count, purchase_count=purchase_count, revenue=revenue))
                    else:
                        row.view_count, row.purchase_count, row.revenue = view_count, purchase_count, revenue
                    ids.append(product_id)
                    if len(ids) % batch_size == 0:
                        s.commit()
                        logger.info("inserted sample batch (%d/%d)", len(ids), count)
                s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                raise TransientIOFailure(f"sample data generation failed: {exc}") from exc
        SOURCE_MUTATIONS.labels(operation="generate").inc()
        result = BatchResult(len(ids), ids)
        if ids:
            result.notification = self.index.processor.notify_rows_changed(ids)
        return result
