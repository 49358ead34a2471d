"""Celery application configuration."""
from celery import Celery

from site_importer.config import get_settings

settings = get_settings()

celery_app = Celery(
    "site_importer",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["site_importer.tasks.upload_tasks"],
)

celery_app.conf.update(
    task_track_started=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_always_eager=settings.celery_task_always_eager,
    worker_prefetch_multiplier=1,
)
