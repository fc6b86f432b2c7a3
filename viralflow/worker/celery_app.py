"""
Celery application for the viral pipeline.

Broker/backend: Redis (REDIS_URL env).
Default queue: pipeline.
Beat fires `pipeline.run_batch` every 5 minutes; a posting slot stays due for
SCHEDULE_WINDOW_MINUTES (6) after its time, so every slot sees one tick.
"""
from celery import Celery
from celery.schedules import crontab

from viralflow.settings import get_settings

settings = get_settings()

celery_app = Celery(
    "viralflow",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,
    task_default_queue="pipeline",
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # visibility_timeout must exceed task_time_limit or Redis redelivers running batches
    broker_transport_options={"visibility_timeout": 60 * 60},
    beat_schedule={
        "viral-pipeline-batch": {
            "task": "pipeline.run_batch",
            "schedule": crontab(minute="*/5"),
        },
    },
)

celery_app.autodiscover_tasks(["viralflow.worker"])
