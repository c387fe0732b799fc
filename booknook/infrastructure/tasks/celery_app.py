"""Celery application for out-of-band content-feature extraction.

Redis is both broker and result backend. Workers are started with::

    celery -A booknook.infrastructure.tasks.celery_app worker --loglevel=info
"""

from celery import Celery

from booknook.core.config import settings

celery_app = Celery(
    "booknook",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["booknook.infrastructure.tasks.feature_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # STARTED is reported to GET /tasks/{task_id}
    task_track_started=True,
    result_expires=24 * 3600,
    # Feature runs are idempotent; redelivery after a worker crash is allowed.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
)
