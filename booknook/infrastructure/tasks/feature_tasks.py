"""Celery task wrapper for content-feature extraction.

A thin synchronous wrapper around the coroutine in
``booknook.services.background_tasks``. Each worker process runs its own
event loop via ``asyncio.run()``.

Retry policy: at most one retry, 60 s after the failure.
"""

import asyncio
import logging

from booknook.core.dependencies import get_epub_reader, get_storage_service, get_text_feature_extractor
from booknook.infrastructure.database.connection import get_worker_session_maker
from booknook.infrastructure.tasks.celery_app import celery_app
from booknook.services.background_tasks import extract_book_features_task

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="features.extract_book_features", max_retries=1)
def extract_book_features(self, book_id: str) -> None:
    """Celery task: compute and store content features for an uploaded book."""
    try:
        asyncio.run(
            extract_book_features_task(
                book_id,
                session_maker=get_worker_session_maker(),
                storage_service=get_storage_service(),
                epub_reader=get_epub_reader(),
                extractor=get_text_feature_extractor(),
            )
        )
    except Exception as exc:
        logger.warning(
            "extract_book_features failed (attempt %d/%d): %s",
            self.request.retries + 1,
            self.max_retries + 1,
            exc,
        )
        raise self.retry(exc=exc, countdown=60)
