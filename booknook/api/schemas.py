"""Pydantic schemas for API requests and responses."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from booknook.domain.entities import ActivityAction


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------
class ContentFeaturesResponse(BaseModel):
    keywords: list[str] = []
    categories: list[str] = []
    sentiment_score: int = 0

    model_config = ConfigDict(from_attributes=True)


class FileReferenceResponse(BaseModel):
    path: str
    download_url: str
    size: int
    mime_type: str
    file_name: str = ""

    model_config = ConfigDict(from_attributes=True)


class RatingResponse(BaseModel):
    user_id: str
    rating: float
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class BookUpdate(BaseModel):
    """Book update request. Omitted fields are left unchanged."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    author: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    private: Optional[bool] = None


class BookResponse(BaseModel):
    id: UUID
    title: str
    author: str
    owner_id: str
    description: str = ""
    tags: list[str] = []
    categories: list[str] = []
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[str] = None
    language: Optional[str] = None
    page_count: Optional[int] = None
    cover_url: str = ""
    content_features: Optional[ContentFeaturesResponse] = None
    read_count: int = 0
    view_count: int = 0
    completion_count: int = 0
    average_rating: float = 0.0
    ratings: list[RatingResponse] = []
    extraction_methods: list[str] = []
    private: bool = False
    file: Optional[FileReferenceResponse] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookListResponse(BaseModel):
    books: list[BookResponse]
    total: int


class ExtractedMetadataResponse(BaseModel):
    """Pipeline output, minus the raw cover bytes."""

    title: str
    author: str
    description: str = ""
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[str] = None
    language: Optional[str] = None
    page_count: Optional[int] = None
    tags: list[str] = []
    categories: list[str] = []
    content_title: Optional[str] = None
    content_author: Optional[str] = None
    confidence: Optional[float] = None
    ai_confidence: Optional[float] = None
    extraction_methods: list[str] = []

    model_config = ConfigDict(from_attributes=True)


class ProbeResponse(BaseModel):
    extracted_metadata: ExtractedMetadataResponse
    cover_url: Optional[str] = None
    metadata_source: str = Field(..., description="e.g. 'EPUB metadata' or 'basic extraction'")


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------
class ReadProgressRequest(BaseModel):
    progress: float = Field(..., ge=0, le=100)
    cfi_location: Optional[str] = None
    session_minutes: Optional[float] = Field(None, gt=0)


class ActivityRequest(BaseModel):
    book_id: UUID
    action: str = Field(..., description="view | read | complete | bookmark | rate")
    metadata: dict[str, Any] = {}


class ActivityResponse(BaseModel):
    book_id: UUID
    action: ActivityAction
    recorded: bool = True


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------
class RecommendedBookResponse(BookResponse):
    """A recommended book with similarity score and reason."""

    similarity_score: Optional[float] = Field(None, description="Content similarity, 0.0 to 1.0")
    reason: Optional[str] = Field(None, description="Human-readable reason for this recommendation")
    source: str = Field(
        "popularity", description="Branch that produced it: content, behavioral, collaborative, popularity"
    )


class RecommendationResponse(BaseModel):
    recommendations: list[RecommendedBookResponse]
    total: int = Field(0, description="Number of recommendations returned")
    strategy: str = Field("ai", description="Variant used: ai or basic")


# ---------------------------------------------------------------------------
# New releases
# ---------------------------------------------------------------------------
class NewReleaseResponse(BaseModel):
    title: str
    author: str
    source: str
    description: str = ""
    cover_url: Optional[str] = None
    publisher: Optional[str] = None
    isbn: Optional[str] = None
    publication_date: Optional[str] = None
    rank: Optional[int] = None
    weeks_on_list: Optional[int] = None
    is_new_release: bool = True

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------
class TaskStatusResponse(BaseModel):
    """Status of a background Celery task."""

    task_id: str
    status: str = Field(..., description="PENDING | STARTED | SUCCESS | FAILURE | RETRY")
    error: Optional[str] = None
