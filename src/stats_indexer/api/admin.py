from __future__ import annotations
import os
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from stats_indexer.config import get_settings, parse_api_keys
from stats_indexer.indexer.manager import IndexerManager, get_manager
from stats_indexer.service import ProductStatsService


def require_admin_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")):
    allowed = parse_api_keys(get_settings().admin_api_keys)
    if allowed and x_api_key not in allowed:
        raise HTTPException(status_code=401, detail="invalid API key")


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])


class StatusOut(BaseModel):
    index: str
    mode: str
    status: str
    health: str
    source_count: int
    index_count: int
    pending_changelog_count: int
    last_full_reindex_at: datetime | None = None
    last_changelog_run_at: datetime | None = None


class ModeIn(BaseModel):
    mode: str


class PartialReindexIn(BaseModel):
    ids: List[int]
    force_immediate: bool = False


class ClearIn(BaseModel):
    confirm: str | None = None
    force: bool = False


class SampleDataIn(BaseModel):
    count: int = Field(100, ge=1, le=100000)
    start_id: int = 1001
    seed: int | None = None


def _run_inline() -> bool:
    return get_settings().app_env == "test" or os.getenv("APP_ENV") == "test"


@router.get("/indexes", response_model=list[StatusOut])
def list_indexes(manager: IndexerManager = Depends(get_manager)):
    return manager.statuses()


@router.get("/indexes/{name}/status", response_model=StatusOut)
def index_status(name: str, manager: IndexerManager = Depends(get_manager)):
    return manager.status(name)


@router.put("/indexes/{name}/mode", response_model=StatusOut)
def set_mode(name: str, body: ModeIn, manager: IndexerManager = Depends(get_manager)):
    return manager.set_mode(name, body.mode)


@router.post("/indexes/{name}/reindex")
def trigger_full_reindex(name: str, background: bool = False, manager: IndexerManager = Depends(get_manager)):
    manager.get(name)
    if background and not _run_inline():
        from stats_indexer.infrastructure.celery_app import celery_app  # noqa: F401  binds shared tasks
        from stats_indexer.tasks.indexing import reindex_full
        task = reindex_full.delay(name)
        return {"status": "queued", "index": name, "task_id": task.id}
    return {"status": "ok", **manager.trigger_full_reindex(name).as_dict()}


@router.post("/indexes/{name}/reindex/partial")
def trigger_partial_reindex(name: str, body: PartialReindexIn, manager: IndexerManager = Depends(get_manager)):
    return manager.trigger_partial_reindex(name, body.ids, force_immediate=body.force_immediate).as_dict()


@router.post("/indexes/{name}/invalidate", response_model=StatusOut)
def invalidate(name: str, manager: IndexerManager = Depends(get_manager)):
    return manager.invalidate(name)


@router.post("/indexes/{name}/clear")
def clear_all(name: str, body: ClearIn, manager: IndexerManager = Depends(get_manager)):
    return manager.clear_all(name, force=body.force, confirm=body.confirm)


@router.post("/changelogs/process")
def process_changelogs(manager: IndexerManager = Depends(get_manager)):
    return {"status": "ok", "indexes": [r.as_dict() for r in manager.process_changelogs()]}


@router.post("/sample-data")
def generate_sample_data(body: SampleDataIn, manager: IndexerManager = Depends(get_manager)):
    result = ProductStatsService(manager).generate_sample_data(body.count, body.start_id, body.seed)
    return {"generated": result.updated, "first_id": body.start_id, "last_id": body.start_id + body.count - 1}
