"""Domain entities for BookNook."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID


class ActivityAction(str, Enum):
    VIEW = "view"
    READ = "read"
    COMPLETE = "complete"
    BOOKMARK = "bookmark"
    RATE = "rate"


# Actions that count as "the user has read this book".
READING_ACTIONS = (ActivityAction.READ, ActivityAction.COMPLETE)


@dataclass
class ContentFeatures:
    """Keyword/category/sentiment summary of a book's text.

    ``keywords`` is ranked most relevant first; ``categories`` is treated as
    a set but kept as a list so it serialises cleanly.
    """

    keywords: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    sentiment_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "keywords": list(self.keywords),
            "categories": list(self.categories),
            "sentimentScore": self.sentiment_score,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ContentFeatures"]:
        if not data:
            return None
        return cls(
            keywords=list(data.get("keywords") or []),
            categories=list(data.get("categories") or []),
            sentiment_score=int(data.get("sentimentScore") or 0),
        )


@dataclass
class FileReference:
    """Handle to a stored binary: path in the blob store plus a download URL."""

    path: str
    download_url: str
    size: int
    mime_type: str
    file_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "downloadURL": self.download_url,
            "size": self.size,
            "mimeType": self.mime_type,
            "fileName": self.file_name,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["FileReference"]:
        if not data:
            return None
        return cls(
            path=data["path"],
            download_url=data.get("downloadURL", ""),
            size=int(data.get("size") or 0),
            mime_type=data.get("mimeType", "application/epub+zip"),
            file_name=data.get("fileName", ""),
        )


@dataclass
class RatingEntry:
    user_id: str
    rating: float
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Book:
    id: UUID
    title: str
    owner_id: str
    author: str = "Unknown Author"
    description: str = ""
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[str] = None
    language: Optional[str] = None
    page_count: Optional[int] = None
    cover_url: str = ""
    content_features: Optional[ContentFeatures] = None
    read_count: int = 0
    view_count: int = 0
    completion_count: int = 0
    average_rating: float = 0.0
    ratings: list[RatingEntry] = field(default_factory=list)
    extraction_methods: list[str] = field(default_factory=list)
    private: bool = False
    file: Optional[FileReference] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class UserActivityEvent:
    """Append-only record of one user action against one book."""

    id: UUID
    user_id: str
    book_id: UUID
    action: ActivityAction
    timestamp: datetime
    metadata: dict = field(default_factory=dict)


@dataclass
class RecentlyReadEntry:
    book_id: UUID
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class LastReadEntry:
    progress: float
    cfi_location: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class UserProfile:
    """The slice of a user profile the recommendation core reads.

    ``recently_read`` is most-recent-first, one entry per book, capped.
    """

    user_id: str
    display_name: Optional[str] = None
    recently_read: list[RecentlyReadEntry] = field(default_factory=list)
    last_read: dict[str, LastReadEntry] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def recently_read_ids(self) -> list[UUID]:
        return [entry.book_id for entry in self.recently_read]


@dataclass
class RecommendationCandidate:
    """A book annotated for one recommendation response. Never persisted."""

    book: Book
    similarity_score: Optional[float] = None
    reason: Optional[str] = None
    source: str = "popularity"


@dataclass
class RecommendationEvent:
    """Analytics summary of one recommendation call."""

    id: UUID
    user_id: str
    variant: str
    source_counts: dict[str, int] = field(default_factory=dict)
    total: int = 0
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class CatalogRecord:
    """A third-party catalog hit normalised to the common metadata fields."""

    source: str
    title: Optional[str] = None
    authors: list[str] = field(default_factory=list)
    description: str = ""
    categories: list[str] = field(default_factory=list)
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    thumbnail: Optional[str] = None
    language: Optional[str] = None
    isbn: Optional[str] = None
    page_count: Optional[int] = None
    external_id: Optional[str] = None
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None


@dataclass
class ExtractedMetadata:
    """Result of the metadata extraction pipeline.

    ``title`` and ``author`` are always populated. ``extraction_methods``
    lists every stage tag that contributed, in execution order.
    """

    title: str
    author: str = "Unknown Author"
    description: str = ""
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[str] = None
    language: Optional[str] = None
    page_count: Optional[int] = None
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    cover_bytes: Optional[bytes] = None
    cover_media_type: Optional[str] = None
    cover_url: Optional[str] = None
    content_title: Optional[str] = None
    content_author: Optional[str] = None
    confidence: Optional[float] = None
    ai_confidence: Optional[float] = None
    extraction_methods: list[str] = field(default_factory=list)


@dataclass
class ContentClassification:
    """Self-reported output of a content-analysis classifier."""

    title: str
    author: str
    confidence: float
    description: Optional[str] = None
    tags: list[str] = field(default_factory=list)


@dataclass
class NewRelease:
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


@dataclass
class EpubStructure:
    """Fields read straight from the package document inside the zip."""

    title: Optional[str] = None
    creator: Optional[str] = None
    language: Optional[str] = None
    identifiers: list[str] = field(default_factory=list)


@dataclass
class EpubPackage:
    """Package metadata plus a text sample of the first spine sections."""

    title: Optional[str] = None
    creators: list[str] = field(default_factory=list)
    description: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    date: Optional[str] = None
    identifiers: list[str] = field(default_factory=list)
    subjects: list[str] = field(default_factory=list)
    cover_bytes: Optional[bytes] = None
    cover_media_type: Optional[str] = None
    sample_text: str = ""
