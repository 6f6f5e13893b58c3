from celery import Celery
from celery import signals
import logging
import subprocess
import time
from prometheus_client import Counter, Histogram
from tagbox_feeder.config import get_settings

settings = get_settings()

celery_app = Celery(
    "tagbox_feeder",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "tagbox_feeder.tasks.feeder",
    ],
)

celery_app.conf.update(task_serializer="json", result_serializer="json", accept_content=["json"], timezone="UTC", enable_utc=True)

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


@signals.worker_process_init.connect
def _worker_process_init(**kwargs):  # noqa
    # Configure package logging once per worker process
    logger = logging.getLogger("tagbox_feeder")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(settings.log_level.upper())
    # If configured, bring the schema up to date before the first task (idempotent)
    if settings.migrate_on_start:
        try:
            subprocess.run(["alembic", "upgrade", "head"], check=True)
        except (OSError, subprocess.CalledProcessError):
            logger.exception("startup alembic upgrade failed")
            raise

# Periodic tasks (beat). Requires worker with -B or separate beat service.
celery_app.conf.beat_schedule = {
    "feed-pending-tags": {
        "task": "tagbox_feeder.tasks.feeder.feed_pending_tags",
        "schedule": float(settings.feed_interval_seconds),
        "options": {"expires": max(settings.feed_interval_seconds - 1, 1)},
    },
    "run-important-tagboxes": {
        "task": "tagbox_feeder.tasks.feeder.run_important_tagboxes",
        "schedule": float(settings.run_interval_seconds),
        "options": {"expires": max(settings.run_interval_seconds - 1, 1)},
    },
}
