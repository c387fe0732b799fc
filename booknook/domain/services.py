"""Domain-level application service interfaces (ports).

The API layer depends on these contracts only. Concrete implementations live
in ``booknook/services/`` and ``booknook/infrastructure/`` and are wired by the
composition root in ``booknook/core/dependencies.py``; tests swap them via
``app.dependency_overrides``.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from booknook.domain.entities import (
    ActivityAction,
    Book,
    ContentClassification,
    EpubPackage,
    EpubStructure,
    ExtractedMetadata,
    NewRelease,
    RecommendationCandidate,
)
from booknook.domain.repositories import ProgressCallback


class IEpubReader(ABC):

    @abstractmethod
    async def analyze_structure(self, content: bytes) -> Optional[EpubStructure]:
        """Read container.xml and the package document straight from the zip."""
        pass

    @abstractmethod
    async def read_package(
        self, content: bytes, sample_sections: int, sample_max_chars: int,
    ) -> Optional[EpubPackage]:
        pass

    @abstractmethod
    async def read_text(self, content: bytes, max_sections: int = 5, max_chars: int = 50000) -> str:
        pass


class IContentClassifier(ABC):

    @abstractmethod
    async def classify(self, text: str) -> Optional[ContentClassification]:
        pass


class IMetadataExtractor(ABC):

    @abstractmethod
    async def extract_metadata(self, content: bytes, filename: str) -> ExtractedMetadata:
        """Never raises. Always returns at least a title and an author."""
        pass


class IActivityTracker(ABC):

    @abstractmethod
    async def track(
        self,
        user_id: str,
        book_id: UUID,
        action: ActivityAction,
        metadata: Optional[dict] = None,
    ) -> None:
        pass


class IRecommendationService(ABC):

    @abstractmethod
    async def get_recommendations(self, user_id: str, max_count: int = 10) -> list[RecommendationCandidate]:
        """Collaborative + content hybrid."""
        pass

    @abstractmethod
    async def get_ai_recommendations(self, user_id: str, max_count: int = 10) -> list[RecommendationCandidate]:
        """Content + behavioral hybrid, similarity annotated."""
        pass

    @abstractmethod
    async def get_similar_books(self, book_id: UUID, limit: int = 5) -> list[Book]:
        pass

    @abstractmethod
    async def get_popular_books(self, limit: int = 10) -> list[Book]:
        pass


class IBookService(ABC):

    @abstractmethod
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
        """Store the file, then write the record.

        Caller-supplied fields always win; the extraction pipeline only fills
        what the caller left out.
        """
        pass

    @abstractmethod
    async def probe_metadata(
        self, file_content: bytes, filename: str, owner_id: str,
    ) -> tuple[ExtractedMetadata, Optional[str]]:
        """Extract without persisting a book. Returns the metadata and cover URL."""
        pass

    @abstractmethod
    async def get_book(self, book_id: UUID) -> Optional[Book]:
        pass

    @abstractmethod
    async def list_user_books(self, owner_id: str) -> list[Book]:
        pass

    @abstractmethod
    async def search_books(self, owner_id: str, term: str) -> list[Book]:
        pass

    @abstractmethod
    async def update_book(
        self,
        book_id: UUID,
        title: Optional[str] = None,
        author: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[list[str]] = None,
        private: Optional[bool] = None,
    ) -> Optional[Book]:
        pass

    @abstractmethod
    async def delete_book(self, book_id: UUID) -> bool:
        pass

    @abstractmethod
    async def get_book_content(self, book_id: UUID) -> Optional[tuple[bytes, Book]]:
        pass

    @abstractmethod
    async def update_read_progress(
        self,
        user_id: str,
        book_id: UUID,
        progress: float,
        cfi_location: Optional[str] = None,
        session_minutes: Optional[float] = None,
    ) -> Optional[Book]:
        pass


class INewReleaseService(ABC):

    @abstractmethod
    async def fetch_new_releases(self, max_results: int = 20) -> list[NewRelease]:
        pass
