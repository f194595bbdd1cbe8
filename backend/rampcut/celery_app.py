"""Celery application configuration."""

from celery import Celery

from rampcut.config import get_settings

settings = get_settings()

celery_app = Celery(
    "rampcut",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["rampcut.tasks.export_task"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3300,  # Soft limit 55 minutes
    worker_prefetch_multiplier=1,  # Process one task at a time
    # Exports are never retried, so a lost worker must not requeue the task
    task_acks_late=False,
)
