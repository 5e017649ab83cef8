from celery import Celery
from celery import signals
import time
from prometheus_client import Counter, Histogram
from stats_indexer.config import get_settings

settings = get_settings()

celery_app = Celery(
    "stats_indexer",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "stats_indexer.tasks.indexing",
    ],
)

celery_app.conf.update(task_serializer="json", result_serializer="json", accept_content=["json"], timezone="UTC", enable_utc=True)

# Task metrics (exposed in API process by sharing default registry via multiprocess if configured)
TASK_SUCCESS = Counter('celery_task_success_total', 'Celery task successes', ['task'])
TASK_FAILURE = Counter('celery_task_failure_total', 'Celery task failures', ['task'])
TASK_DURATION = Histogram('celery_task_duration_seconds', 'Celery task runtime', ['task'], buckets=(0.05,0.1,0.25,0.5,1,2,5,10,30,60))

_task_start_times = {}


@signals.task_prerun.connect
def _task_prerun(sender=None, task_id=None, **kwargs):  # noqa
    _task_start_times[task_id] = time.time()


@signals.task_postrun.connect
def _task_postrun(sender=None, task_id=None, state=None, **kwargs):  # noqa
    name = sender.name if sender else 'unknown'
    start = _task_start_times.pop(task_id, None)
    if start is not None:
        TASK_DURATION.labels(task=name).observe(time.time() - start)
    if state == 'SUCCESS':
        TASK_SUCCESS.labels(task=name).inc()
    elif state is not None:
        TASK_FAILURE.labels(task=name).inc()


# Periodic tasks (beat). Requires worker with -B or separate beat service.
# A tick that is still queued when the next one is due expires instead of piling up.
_poll = float(max(1, settings.changelog_poll_seconds))
celery_app.conf.beat_schedule = {
    "process-index-changelogs": {
        "task": "stats_indexer.tasks.indexing.process_changelogs",
        "schedule": _poll,
        "options": {"expires": max(1.0, _poll - 1)},
    },
}
