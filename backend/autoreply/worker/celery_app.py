"""
Celery application for background automation runs.

Broker/backend: Redis (REDIS_URL env).
Default queue: automation.
"""
from celery import Celery

from autoreply.settings import get_settings

settings = get_settings()

celery_app = Celery(
    "autoreply",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # run_deadline_sec plus the tail steps (approval bookkeeping, notification)
    task_soft_time_limit=int(settings.run_deadline_sec) + 120,
    task_time_limit=int(settings.run_deadline_sec) + 300,
    task_default_queue="automation",
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
)

celery_app.autodiscover_tasks(["autoreply.worker"])
