from __future__ import annotations
import logging
from celery import shared_task
from stats_indexer.indexer.manager import get_manager

logger = logging.getLogger(__name__)


@shared_task
def process_changelogs():
    """Scheduled runner tick: drain changelogs of every due logical index."""
    reports = get_manager().process_changelogs()
    drained = sum(r.drained for r in reports)
    if drained:
        logger.info("processed %d changelog entries across %d indexes", drained, len(reports))
    return {"status": "ok", "indexes": [r.as_dict() for r in reports]}


@shared_task
def reindex_full(index_name: str):
    result = get_manager().trigger_full_reindex(index_name)
    return {"status": "ok", **result.as_dict()}


@shared_task
def reindex_partial(index_name: str, ids: list[int], force_immediate: bool = True):
    outcome = get_manager().trigger_partial_reindex(index_name, ids, force_immediate=force_immediate)
    return {"status": "ok", **outcome.as_dict()}
