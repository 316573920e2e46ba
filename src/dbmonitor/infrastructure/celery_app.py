from celery import Celery
from celery import signals
import logging
import time
from prometheus_client import Counter, Histogram
from dbmonitor.config import get_settings
from dbmonitor.infrastructure.scheduling import job_specs, beat_schedule

logger = logging.getLogger(__name__)

settings = get_settings()

celery_app = Celery(
    "dbmonitor",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "dbmonitor.tasks.collection",
        "dbmonitor.tasks.alerts",
        "dbmonitor.tasks.schema",
        "dbmonitor.tasks.suggestions",
    ],
)

celery_app.conf.update(task_serializer="json", result_serializer="json", accept_content=["json"], timezone="UTC", enable_utc=True)

TASK_SUCCESS = Counter('celery_task_success_total', 'Celery task successes', ['task'])
TASK_FAILURE = Counter('celery_task_failure_total', 'Celery task failures', ['task'])
TASK_DURATION = Histogram('celery_task_duration_seconds', 'Celery task runtime', ['task'], buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 300))

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


@signals.beat_init.connect
def _collect_schema_on_start(sender=None, **kwargs):  # noqa
    """Schema snapshots are taken once eagerly when the scheduler boots."""
    if not get_settings().schema_collect_on_start:
        return
    celery_app.send_task(job_specs()["schema"].task)
    logger.info("queued eager schema snapshot collection")


# Periodic tasks (beat). Requires worker with -B or separate beat service.
celery_app.conf.beat_schedule = beat_schedule(job_specs(settings))
