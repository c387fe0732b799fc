"""Repository and collaborator interfaces (ports) for dependency inversion."""

from abc import ABC, abstractmethod
from typing import Callable, Optional
from uuid import UUID

from booknook.domain.entities import (
    ActivityAction,
    Book,
    CatalogRecord,
    ContentFeatures,
    FileReference,
    RatingEntry,
    RecommendationEvent,
    UserActivityEvent,
    UserProfile,
)

ProgressCallback = Callable[[float], None]


class IBookRepository(ABC):

    @abstractmethod
    async def create(self, book: Book) -> Book:
        pass

    @abstractmethod
    async def get_by_id(self, book_id: UUID) -> Optional[Book]:
        pass

    @abstractmethod
    async def get_many(self, book_ids: list[UUID]) -> list[Book]:
        """Return the books that exist among *book_ids*, in the given order."""
        pass

    @abstractmethod
    async def find_by_title(self, title: str) -> Optional[Book]:
        """Exact (case-sensitive) title match."""
        pass

    @abstractmethod
    async def list_popular(self, limit: int, exclude_ids: Optional[list[UUID]] = None) -> list[Book]:
        """Non-private books ordered by descending read count."""
        pass

    @abstractmethod
    async def list_candidates(self, exclude_ids: list[UUID], limit: int) -> list[Book]:
        pass

    @abstractmethod
    async def list_by_page_count(
        self, threshold: int, shorter: bool, exclude_ids: list[UUID], limit: int,
    ) -> list[Book]:
        """Books below (``shorter``) or above the page-count threshold, by read count."""
        pass

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[Book]:
        pass

    @abstractmethod
    async def search_by_owner(self, owner_id: str, term: str) -> list[Book]:
        """Owner's books whose title, author or description contains *term*, any case."""
        pass

    @abstractmethod
    async def list_by_author(self, author: str, exclude_ids: list[UUID], limit: int) -> list[Book]:
        pass

    @abstractmethod
    async def list_by_tags(self, tags: list[str], exclude_ids: list[UUID], limit: int) -> list[Book]:
        pass

    @abstractmethod
    async def update(self, book: Book) -> Book:
        pass

    @abstractmethod
    async def update_content_features(self, book_id: UUID, features: ContentFeatures) -> bool:
        pass

    @abstractmethod
    async def increment_counter(self, book_id: UUID, counter: str) -> None:
        """Atomically add one to ``read_count``, ``view_count`` or ``completion_count``."""
        pass

    @abstractmethod
    async def add_rating(self, book_id: UUID, entry: RatingEntry) -> Optional[float]:
        """Append a rating and return the recomputed average."""
        pass

    @abstractmethod
    async def delete(self, book_id: UUID) -> bool:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class IUserProfileRepository(ABC):

    @abstractmethod
    async def get(self, user_id: str) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def get_or_create(self, user_id: str) -> UserProfile:
        pass

    @abstractmethod
    async def add_recently_read(self, user_id: str, book_id: UUID, cap: int) -> bool:
        """Prepend *book_id* unless already present. Returns True if added."""
        pass

    @abstractmethod
    async def set_last_read(
        self, user_id: str, book_id: UUID, progress: float, cfi_location: Optional[str],
    ) -> None:
        pass


class IActivityRepository(ABC):

    @abstractmethod
    async def append(self, event: UserActivityEvent) -> UserActivityEvent:
        pass

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        actions: Optional[list[ActivityAction]] = None,
        limit: int = 100,
    ) -> list[UserActivityEvent]:
        """Newest first by the event's own timestamp."""
        pass

    @abstractmethod
    async def list_readers_of_book(self, book_id: UUID, exclude_user_id: str) -> list[str]:
        pass

    @abstractmethod
    async def list_books_read_by(
        self, user_ids: list[str], per_user_limit: int = 20,
    ) -> dict[str, list[UUID]]:
        """Each user's read/complete books, newest first, from at most
        *per_user_limit* of their most recent reading events."""
        pass


class IRecommendationEventRepository(ABC):

    @abstractmethod
    async def record(self, event: RecommendationEvent) -> None:
        pass


class IStorageService(ABC):

    @abstractmethod
    async def save_file(
        self,
        file_content: bytes,
        filename: str,
        owner_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FileReference:
        pass

    @abstractmethod
    async def get_file(self, file_path: str) -> bytes:
        pass

    @abstractmethod
    async def delete_file(self, file_path: str) -> bool:
        pass

    @abstractmethod
    async def save_cover(self, content: bytes, media_type: str, owner_id: str) -> str:
        """Store a cover image and return its public URL."""
        pass


class ICatalogClient(ABC):

    source: str = "catalog"

    @abstractmethod
    async def lookup_by_isbn(self, isbn: str) -> Optional[CatalogRecord]:
        pass

    @abstractmethod
    async def lookup_by_title_author(
        self, title: str, author: Optional[str] = None,
    ) -> Optional[CatalogRecord]:
        pass
