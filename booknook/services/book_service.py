"""Book service with business logic."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from booknook.domain.entities import ActivityAction, Book, ExtractedMetadata
from booknook.domain.exceptions import UploadError
from booknook.domain.repositories import (
    IBookRepository,
    IStorageService,
    IUserProfileRepository,
    ProgressCallback,
)
from booknook.domain.services import IActivityTracker, IBookService, IMetadataExtractor

logger = logging.getLogger(__name__)


class _ProgressReporter:
    """Maps phase-local percentages onto one monotonically increasing 0-100 scale."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self.callback = callback
        self.current = 0.0

    def report(self, value: float) -> None:
        value = max(self.current, min(float(value), 100.0))
        self.current = value
        if self.callback is None:
            return
        try:
            self.callback(value)
        except Exception as exc:
            logger.debug("Progress callback raised: %s", exc)

    def phase(self, start: float, end: float) -> ProgressCallback:
        return lambda pct: self.report(start + (end - start) * pct / 100.0)


class BookService(IBookService):
    """Book service handling business logic."""

    def __init__(
        self,
        book_repository: IBookRepository,
        storage_service: IStorageService,
        metadata_extractor: IMetadataExtractor,
        activity_tracker: Optional[IActivityTracker] = None,
        profile_repository: Optional[IUserProfileRepository] = None,
    ):
        self.book_repository = book_repository
        self.storage_service = storage_service
        self.metadata_extractor = metadata_extractor
        self.activity_tracker = activity_tracker
        self.profile_repository = profile_repository

    async def upload_book(
        self,
        file_content: bytes,
        filename: str,
        owner_id: str,
        title: Optional[str] = None,
        author: Optional[str] = None,
        description: Optional[str] = None,
        cover_url: Optional[str] = None,
        tags: Optional[list[str]] = None,
        private: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Book:
        """Ingest a book.

        Metadata is resolved in priority order:

        1. Caller-supplied values, which always win.
        2. The extraction pipeline (EPUB package, signatures, catalogs, classifier).
        3. The filename, then ``"Unknown Author"``.

        Progress runs 0-50 across extraction, 50-95 across the file
        transfer and reaches 100 once the record exists. The file is stored
        before the record is written; if the record write fails the stored
        file is removed again.
        """
        progress = _ProgressReporter(on_progress)
        progress.report(0)

        # ── 1. Best-effort extraction (never raises) ─────────────────────────
        extracted = await self.metadata_extractor.extract_metadata(file_content, filename)
        logger.info(
            "Extracted '%s' by '%s' from %s via %s",
            extracted.title, extracted.author, filename, extracted.extraction_methods,
        )
        progress.report(50)

        # ── 2. Store the file ────────────────────────────────────────────────
        try:
            file_ref = await self.storage_service.save_file(
                file_content, filename, owner_id, on_progress=progress.phase(50, 95)
            )
        except Exception as exc:
            logger.error("Storing %s for %s failed: %s", filename, owner_id, exc, exc_info=True)
            raise UploadError(f"Could not store {filename}") from exc
        logger.info("File saved: %s", file_ref.path)

        resolved_cover = cover_url or await self._store_cover(extracted, owner_id) or ""

        # ── 3. Write the record ──────────────────────────────────────────────
        now = datetime.utcnow()
        book = Book(
            id=uuid4(),
            title=title or extracted.title,
            author=author or extracted.author,
            owner_id=owner_id,
            description=description or extracted.description or "",
            tags=list(tags) if tags else list(extracted.tags),
            categories=list(extracted.categories),
            isbn=extracted.isbn,
            publisher=extracted.publisher,
            publication_date=extracted.publication_date,
            language=extracted.language,
            page_count=extracted.page_count,
            cover_url=resolved_cover,
            extraction_methods=list(extracted.extraction_methods),
            private=bool(private),
            file=file_ref,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self.book_repository.create(book)
        except Exception as exc:
            logger.error("Book record write failed for %s: %s", filename, exc, exc_info=True)
            await self._discard(file_ref.path)
            raise UploadError(f"Could not create the book record for {filename}") from exc

        progress.report(100)
        logger.info("Book record created: %s ('%s' by '%s')", created.id, created.title, created.author)
        return created

    async def probe_metadata(
        self, file_content: bytes, filename: str, owner_id: str,
    ) -> tuple[ExtractedMetadata, Optional[str]]:
        extracted = await self.metadata_extractor.extract_metadata(file_content, filename)
        cover = await self._store_cover(extracted, owner_id)
        return extracted, cover

    async def get_book(self, book_id: UUID) -> Optional[Book]:
        return await self.book_repository.get_by_id(book_id)

    async def list_user_books(self, owner_id: str) -> list[Book]:
        return await self.book_repository.list_by_owner(owner_id)

    async def search_books(self, owner_id: str, term: str) -> list[Book]:
        """Case-insensitive substring search over the owner's own books.

        A blank term matches everything, as an empty substring would.
        """
        term = term.strip()
        if not term:
            return await self.book_repository.list_by_owner(owner_id)
        books = await self.book_repository.search_by_owner(owner_id, term)
        logger.info("Search for %r by %s matched %d books", term, owner_id, len(books))
        return books

    async def update_book(
        self,
        book_id: UUID,
        title: Optional[str] = None,
        author: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[list[str]] = None,
        private: Optional[bool] = None,
    ) -> Optional[Book]:
        """Update the fields that were supplied; leave the rest untouched."""
        book = await self.book_repository.get_by_id(book_id)
        if not book:
            return None
        if title is not None:
            book.title = title
        if author is not None:
            book.author = author
        if description is not None:
            book.description = description
        if tags is not None:
            book.tags = list(tags)
        if private is not None:
            book.private = private
        book.updated_at = datetime.utcnow()
        return await self.book_repository.update(book)

    async def delete_book(self, book_id: UUID) -> bool:
        """Delete a book and its stored file."""
        logger.info("Deleting book: %s", book_id)
        book = await self.book_repository.get_by_id(book_id)
        if not book:
            return False
        if book.file:
            await self.storage_service.delete_file(book.file.path)
        deleted = await self.book_repository.delete(book_id)
        if deleted:
            logger.info("Book deleted: %s", book_id)
        return deleted

    async def get_book_content(self, book_id: UUID) -> Optional[tuple[bytes, Book]]:
        book = await self.book_repository.get_by_id(book_id)
        if not book or not book.file:
            return None
        return await self.storage_service.get_file(book.file.path), book

    async def update_read_progress(
        self,
        user_id: str,
        book_id: UUID,
        progress: float,
        cfi_location: Optional[str] = None,
        session_minutes: Optional[float] = None,
    ) -> Optional[Book]:
        """Record a reader's position and track the read.

        ``progress >= 100`` also records a completion. Tracking failures are
        logged and never fail the progress update itself.
        """
        book = await self.book_repository.get_by_id(book_id)
        if not book:
            return None
        progress = max(0.0, min(float(progress), 100.0))

        if self.profile_repository is not None:
            await self.profile_repository.set_last_read(user_id, book_id, progress, cfi_location)

        if self.activity_tracker is not None:
            metadata: dict = {"progress": progress}
            if cfi_location:
                metadata["cfiLocation"] = cfi_location
            if session_minutes is not None:
                metadata["readingDurationMinutes"] = session_minutes
            try:
                await self.activity_tracker.track(user_id, book_id, ActivityAction.READ, metadata)
            except Exception as exc:
                logger.warning("Tracking read progress for %s on %s failed: %s", user_id, book_id, exc)

        return await self.book_repository.get_by_id(book_id)

    # ------------------------------------------------------------------
    async def _store_cover(self, extracted: ExtractedMetadata, owner_id: str) -> Optional[str]:
        """Upload an embedded cover if one was found, else use a catalog thumbnail."""
        if extracted.cover_bytes:
            try:
                return await self.storage_service.save_cover(
                    extracted.cover_bytes, extracted.cover_media_type or "image/jpeg", owner_id
                )
            except Exception as exc:
                logger.warning("Cover upload failed: %s", exc)
        return extracted.cover_url or None

    async def _discard(self, path: str) -> None:
        try:
            await self.storage_service.delete_file(path)
        except Exception as exc:
            logger.error("Could not remove orphaned file %s: %s", path, exc)
