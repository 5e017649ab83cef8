from __future__ import annotations
from datetime import datetime
from typing import List
from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from stats_indexer.indexer.manager import IndexerManager, get_manager
from stats_indexer.service import ProductStatsService

router = APIRouter(prefix="/products", tags=["products"])


def get_service(manager: IndexerManager = Depends(get_manager)) -> ProductStatsService:
    return ProductStatsService(manager)


class IndexRowOut(BaseModel):
    product_id: int
    view_count: int
    purchase_count: int
    revenue: float
    conversion_rate: float
    average_order_value: float
    popularity_tier: str
    indexed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TierSummaryOut(BaseModel):
    tier: str
    count: int
    avg_conversion: float
    total_revenue: float


class ProductIn(BaseModel):
    product_id: int
    view_count: int = Field(0, ge=0)
    purchase_count: int = Field(0, ge=0)
    revenue: float = Field(0.0, ge=0)


class CountersIn(BaseModel):
    view_count: int | None = Field(None, ge=0)
    purchase_count: int | None = Field(None, ge=0)
    revenue: float | None = Field(None, ge=0)

    def deltas(self) -> dict:
        return {k: v for k, v in self.model_dump(include=set(CountersIn.model_fields)).items() if v is not None}


class PurchaseIn(BaseModel):
    revenue: float = Field(..., ge=0)


class BatchUpdateIn(CountersIn):
    product_id: int


class BatchIn(BaseModel):
    updates: List[BatchUpdateIn]
    force_immediate: bool = False


@router.get("/summary", response_model=list[TierSummaryOut])
def summary_by_tier(service: ProductStatsService = Depends(get_service)):
    return service.index.store.summary_by_tier()


@router.get("/top/conversion", response_model=list[IndexRowOut])
def top_by_conversion(limit: int = Query(10, ge=1, le=1000), service: ProductStatsService = Depends(get_service)):
    return service.index.store.top_by_conversion(limit)


@router.get("/top/tier/{tier}", response_model=list[IndexRowOut])
def top_by_tier(tier: str, limit: int = Query(10, ge=1, le=1000), service: ProductStatsService = Depends(get_service)):
    return service.index.store.top_by_tier(tier, limit)


@router.get("/{product_id}", response_model=IndexRowOut)
def get_indexed(product_id: int, service: ProductStatsService = Depends(get_service)):
    return service.index.store.get(product_id)


@router.get("/{product_id}/source")
def get_source(product_id: int, service: ProductStatsService = Depends(get_service)):
    return service.get_source(product_id)


@router.post("", status_code=201)
def create_product(body: ProductIn, service: ProductStatsService = Depends(get_service)):
    outcome = service.create_product(body.product_id, body.view_count, body.purchase_count, body.revenue)
    return outcome.as_dict()


@router.post("/batch")
def apply_batch(body: BatchIn, service: ProductStatsService = Depends(get_service)):
    updates = [(u.product_id, u.deltas()) for u in body.updates]
    return service.apply_batch(updates, force_immediate=body.force_immediate).as_dict()


@router.post("/{product_id}/increment")
def increment_counters(product_id: int, body: CountersIn, service: ProductStatsService = Depends(get_service)):
    return service.increment_counters(product_id, body.deltas()).as_dict()


@router.post("/{product_id}/views")
def increment_views(product_id: int, by: int = Query(1, ge=1), service: ProductStatsService = Depends(get_service)):
    return service.increment_view_count(product_id, by).as_dict()


@router.post("/{product_id}/purchase")
def record_purchase(product_id: int, body: PurchaseIn = Body(...), service: ProductStatsService = Depends(get_service)):
    return service.record_purchase(product_id, body.revenue).as_dict()
