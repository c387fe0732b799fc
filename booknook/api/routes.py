"""Book API routes (upload, probe, CRUD, content, read progress, similar, popular)."""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booknook.api.schemas import (
    BookListResponse,
    BookResponse,
    BookUpdate,
    ExtractedMetadataResponse,
    ProbeResponse,
    ReadProgressRequest,
)
from booknook.core.config import settings
from booknook.core.dependencies import (
    get_book_service,
    get_current_user_id,
    get_epub_reader,
    get_recommendation_service,
    get_storage_service,
    get_text_feature_extractor,
)
from booknook.domain.entities import Book
from booknook.domain.exceptions import UploadError
from booknook.domain.repositories import IStorageService
from booknook.domain.services import IBookService, IEpubReader, IRecommendationService
from booknook.infrastructure.database.connection import get_session_maker
from booknook.infrastructure.tasks.feature_tasks import extract_book_features
from booknook.services.background_tasks import extract_book_features_task
from booknook.services.metadata_pipeline import confidence_source_label

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/books", tags=["books"])


def _split_tags(tags: Optional[str]) -> Optional[list[str]]:
    if not tags:
        return None
    return [tag.strip() for tag in tags.split(",") if tag.strip()]


def _visible_to(book: Optional[Book], user_id: str) -> bool:
    return book is not None and (not book.private or book.owner_id == user_id)


async def _read_upload(file: UploadFile) -> bytes:
    if not file.filename:
        raise HTTPException(status_code=400, detail="File is required")
    file_content = await file.read()
    if len(file_content) == 0:
        raise HTTPException(status_code=400, detail="File is empty")
    return file_content


async def _extract_features_inline(
    book_id: str,
    session_maker: async_sessionmaker[AsyncSession],
    storage: IStorageService,
    reader: IEpubReader,
) -> None:
    try:
        await extract_book_features_task(
            book_id, session_maker, storage, reader, get_text_feature_extractor()
        )
    except Exception as exc:
        logger.warning("Inline feature extraction for %s failed: %s", book_id, exc)


# ---------------------------------------------------------------------------
# Upload & probe
# ---------------------------------------------------------------------------
@router.post("", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
async def upload_book(
    file: Annotated[UploadFile, File()],
    response: Response,
    background_tasks: BackgroundTasks,
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
    session_maker: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_maker)],
    storage: Annotated[IStorageService, Depends(get_storage_service)],
    reader: Annotated[IEpubReader, Depends(get_epub_reader)],
    title: Annotated[Optional[str], Form()] = None,
    author: Annotated[Optional[str], Form()] = None,
    description: Annotated[Optional[str], Form()] = None,
    cover_url: Annotated[Optional[str], Form()] = None,
    tags: Annotated[Optional[str], Form(description="Comma separated")] = None,
    private: Annotated[bool, Form()] = False,
) -> BookResponse:
    """Upload an EPUB. Only the file is required.

    Title, author, description, cover and tags are extracted from the book
    when not supplied; supplied values always win. Content features are
    computed afterwards, either by a **Celery task** (its id is returned in
    the ``X-Task-ID`` header, pollable at ``GET /tasks/{task_id}``) or inline
    as a FastAPI background task.
    """
    file_content = await _read_upload(file)
    try:
        book = await book_service.upload_book(
            file_content=file_content,
            filename=file.filename,
            owner_id=user_id,
            title=title,
            author=author,
            description=description,
            cover_url=cover_url,
            tags=_split_tags(tags),
            private=private,
            on_progress=lambda pct: logger.debug("Upload of %s at %.0f%%", file.filename, pct),
        )
    except UploadError as e:
        logger.error("Failed to upload book: %s", e)
        raise HTTPException(status_code=500, detail="Failed to upload book")

    if settings.feature_task_backend == "celery":
        try:
            task = extract_book_features.delay(str(book.id))
            response.headers["X-Task-ID"] = task.id
            logger.info("Celery feature task %s dispatched for book %s", task.id, book.id)
        except Exception as exc:
            logger.warning("Could not dispatch feature task for %s: %s", book.id, exc)
    else:
        background_tasks.add_task(_extract_features_inline, str(book.id), session_maker, storage, reader)

    return BookResponse.model_validate(book)


@router.post("/probe", response_model=ProbeResponse)
async def probe_book(
    file: Annotated[UploadFile, File()],
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> ProbeResponse:
    """Extract metadata for pre-filling the upload form. Nothing is persisted."""
    file_content = await _read_upload(file)
    extracted, cover = await book_service.probe_metadata(file_content, file.filename, user_id)
    return ProbeResponse(
        extracted_metadata=ExtractedMetadataResponse.model_validate(extracted),
        cover_url=cover,
        metadata_source=confidence_source_label(extracted.extraction_methods),
    )


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------
@router.get("/popular", response_model=list[BookResponse])
async def popular_books(
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
    limit: int = 10,
) -> list[BookResponse]:
    books = await recommendation_service.get_popular_books(limit)
    return [BookResponse.model_validate(b) for b in books]


@router.get("/mine", response_model=BookListResponse)
async def my_books(
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> BookListResponse:
    books = await book_service.list_user_books(user_id)
    return BookListResponse(books=[BookResponse.model_validate(b) for b in books], total=len(books))


@router.get("/search", response_model=BookListResponse)
async def search_my_books(
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
    q: Annotated[str, Query(min_length=1, max_length=200)],
) -> BookListResponse:
    """Search the caller's own books by title, author or description."""
    books = await book_service.search_books(user_id, q)
    return BookListResponse(books=[BookResponse.model_validate(b) for b in books], total=len(books))


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
@router.get("/{book_id}", response_model=BookResponse)
async def get_book(
    book_id: UUID,
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> BookResponse:
    """Get a book by ID."""
    book = await book_service.get_book(book_id)
    if not _visible_to(book, user_id):
        raise HTTPException(status_code=404, detail="Book not found")
    return BookResponse.model_validate(book)


@router.put("/{book_id}", response_model=BookResponse)
async def update_book(
    book_id: UUID,
    body: BookUpdate,
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> BookResponse:
    """Update book details. Only the owner may edit."""
    book = await book_service.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    if book.owner_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not the owner of this book")
    updated = await book_service.update_book(
        book_id, body.title, body.author, body.description, body.tags, body.private
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Book not found")
    return BookResponse.model_validate(updated)


@router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(
    book_id: UUID,
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> None:
    """Remove book and associated file."""
    book = await book_service.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    if book.owner_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not the owner of this book")
    deleted = await book_service.delete_book(book_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Book not found")


@router.get("/{book_id}/content")
async def download_book_content(
    book_id: UUID,
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> Response:
    """Download the stored EPUB."""
    result = await book_service.get_book_content(book_id)
    if result is None or not _visible_to(result[1], user_id):
        raise HTTPException(status_code=404, detail="Book not found")
    file_bytes, book = result
    filename = book.file.file_name or book.file.path.rsplit("/", 1)[-1]
    return Response(
        content=file_bytes,
        media_type=book.file.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------
@router.post("/{book_id}/progress", response_model=BookResponse)
async def update_progress(
    book_id: UUID,
    body: ReadProgressRequest,
    book_service: Annotated[IBookService, Depends(get_book_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
) -> BookResponse:
    """Save the reader's position. 100% also marks the book completed."""
    book = await book_service.update_read_progress(
        user_id, book_id, body.progress, body.cfi_location, body.session_minutes
    )
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return BookResponse.model_validate(book)


@router.get("/{book_id}/similar", response_model=list[BookResponse])
async def similar_books(
    book_id: UUID,
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
    user_id: Annotated[str, Depends(get_current_user_id)],
    limit: int = 5,
) -> list[BookResponse]:
    """Same author first, then books sharing a tag."""
    books = await recommendation_service.get_similar_books(book_id, limit)
    return [BookResponse.model_validate(b) for b in books if _visible_to(b, user_id)]
