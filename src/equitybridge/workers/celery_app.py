"""Celery app: broker/backend on Redis, beat drives the periodic reconciliation run."""

from celery import Celery

from equitybridge.config import settings

celery_app = Celery(
    "equitybridge",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["equitybridge.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "process-events": {
            "task": "process_events",
            "schedule": settings.scan_interval_seconds,
            "options": {"expires": settings.scan_interval_seconds},
        },
    },
)
