"""Async implementation of out-of-band content-feature extraction.

The coroutine is self-contained:
  - builds its own repository on the session maker it is given (the Celery
    worker passes a NullPool one, the API's inline path the shared one)
  - reads the EPUB back from storage rather than receiving raw bytes

The Celery wrapper in ``booknook.infrastructure.tasks.feature_tasks`` calls it
with ``asyncio.run()``.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booknook.domain.entities import ContentFeatures
from booknook.domain.repositories import IStorageService
from booknook.domain.services import IEpubReader
from booknook.infrastructure.database.repository import BookRepository
from booknook.services.text_features import TextFeatureExtractor

logger = logging.getLogger(__name__)

TEXT_SECTIONS = 5
TEXT_MAX_CHARS = 50000


async def extract_book_features_task(
    book_id: str,
    session_maker: async_sessionmaker[AsyncSession],
    storage_service: IStorageService,
    epub_reader: IEpubReader,
    extractor: Optional[TextFeatureExtractor] = None,
) -> Optional[ContentFeatures]:
    """Compute and store ``content_features`` for an uploaded book.

    Returns the stored features, or ``None`` if the book is gone or has no file.
    """
    logger.info("BG-TASK: extracting content features for book %s", book_id)
    extractor = extractor or TextFeatureExtractor()
    try:
        book_repo = BookRepository(session_maker)
        book = await book_repo.get_by_id(UUID(book_id))
        if book is None or book.file is None:
            logger.error("BG-TASK: book %s not found or has no file", book_id)
            return None

        file_content = await storage_service.get_file(book.file.path)
        text = await epub_reader.read_text(file_content, TEXT_SECTIONS, TEXT_MAX_CHARS)
        features = extractor.extract(text)

        await book_repo.update_content_features(book.id, features)
        logger.info(
            "BG-TASK: stored %d keywords, categories %s for book %s",
            len(features.keywords), features.categories, book_id,
        )
        return features
    except Exception as exc:
        logger.error("BG-TASK: feature extraction failed for book %s: %s", book_id, exc, exc_info=True)
        raise
