"""Dependency injection container."""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booknook.core.config import settings
from booknook.domain.entities import NewRelease
from booknook.domain.repositories import (
    IActivityRepository,
    IBookRepository,
    ICatalogClient,
    IRecommendationEventRepository,
    IStorageService,
    IUserProfileRepository,
)
from booknook.domain.services import (
    IActivityTracker,
    IBookService,
    IContentClassifier,
    IEpubReader,
    IMetadataExtractor,
    INewReleaseService,
    IRecommendationService,
)
from booknook.infrastructure.cache import TTLCache
from booknook.infrastructure.catalog.composite import CompositeCatalog
from booknook.infrastructure.catalog.google_books import GoogleBooksClient
from booknook.infrastructure.catalog.nyt import NYTBestsellerClient
from booknook.infrastructure.catalog.open_library import OpenLibraryClient
from booknook.infrastructure.database.connection import get_session_maker
from booknook.infrastructure.database.repository import (
    ActivityRepository,
    BookRepository,
    RecommendationEventRepository,
    UserProfileRepository,
)
from booknook.infrastructure.epub.reader import EpubReader
from booknook.infrastructure.llm.services import HeuristicContentClassifier, LlamaContentClassifier
from booknook.infrastructure.storage.local import LocalStorageService
from booknook.infrastructure.storage.s3 import S3StorageService
from booknook.services.activity_tracker import ActivityTracker
from booknook.services.book_service import BookService
from booknook.services.metadata_pipeline import MetadataExtractionPipeline, build_default_stages
from booknook.services.new_releases import NewReleaseService
from booknook.services.recommendation import RecommendationAggregator
from booknook.services.signatures import SignatureRegistry, default_registry
from booknook.services.similarity import ContentSimilarity
from booknook.services.text_features import TextFeatureExtractor


# ---------------------------------------------------------------------------
# Infrastructure providers
# ---------------------------------------------------------------------------
@lru_cache()
def get_storage_service() -> IStorageService:
    """Return the configured storage backend."""
    if settings.storage_backend == "local":
        return LocalStorageService(settings.storage_path, settings.public_base_url)
    elif settings.storage_backend == "s3":
        return S3StorageService(
            bucket_name=settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url or None,
            aws_access_key_id=settings.s3_access_key or None,
            aws_secret_access_key=settings.s3_secret_key or None,
            url_expiry_seconds=settings.s3_url_expiry_seconds,
        )
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


def get_epub_reader() -> IEpubReader:
    return EpubReader(timeout_seconds=settings.epub_parse_timeout_seconds)


@lru_cache()
def get_signature_registry() -> SignatureRegistry:
    return default_registry()


def get_text_feature_extractor() -> TextFeatureExtractor:
    return TextFeatureExtractor(
        registry=get_signature_registry(),
        keyword_cap=settings.keyword_cap,
        category_threshold=settings.category_threshold,
    )


def get_content_classifier() -> IContentClassifier:
    """Return the configured content-analysis classifier."""
    heuristic = HeuristicContentClassifier(get_signature_registry())
    if settings.classifier_provider == "heuristic":
        return heuristic
    elif settings.classifier_provider == "llama":
        return LlamaContentClassifier(
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            timeout=settings.stage_timeout_seconds,
            fallback=heuristic,
        )
    raise ValueError(f"Unknown classifier provider: {settings.classifier_provider}")


def get_google_books_client() -> GoogleBooksClient:
    return GoogleBooksClient(api_key=settings.google_books_api_key, timeout=settings.catalog_timeout_seconds)


def get_catalog() -> ICatalogClient:
    """Google Books first, Open Library as fallback."""
    return CompositeCatalog([
        get_google_books_client(),
        OpenLibraryClient(timeout=settings.catalog_timeout_seconds),
    ])


@lru_cache()
def get_new_release_cache() -> TTLCache[list[NewRelease]]:
    """Process-wide cache, built once on first use."""
    return TTLCache(ttl_seconds=settings.new_release_cache_ttl_seconds)


# ---------------------------------------------------------------------------
# Repository providers
# ---------------------------------------------------------------------------
SessionMaker = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_maker)]


async def get_book_repository(session_maker: SessionMaker) -> IBookRepository:
    return BookRepository(session_maker)


async def get_profile_repository(session_maker: SessionMaker) -> IUserProfileRepository:
    return UserProfileRepository(session_maker)


async def get_activity_repository(session_maker: SessionMaker) -> IActivityRepository:
    return ActivityRepository(session_maker)


async def get_recommendation_event_repository(session_maker: SessionMaker) -> IRecommendationEventRepository:
    return RecommendationEventRepository(session_maker)


# ---------------------------------------------------------------------------
# Service providers
# ---------------------------------------------------------------------------
async def get_metadata_extractor(
    book_repo: IBookRepository = Depends(get_book_repository),
    reader: IEpubReader = Depends(get_epub_reader),
    catalog: ICatalogClient = Depends(get_catalog),
    classifier: IContentClassifier = Depends(get_content_classifier),
) -> IMetadataExtractor:
    stages = build_default_stages(
        reader=reader,
        registry=get_signature_registry(),
        catalog=catalog,
        book_repo=book_repo,
        classifier=classifier,
        signature_threshold=settings.signature_threshold,
        classifier_threshold=settings.classifier_override_threshold,
        sample_sections=settings.sample_sections,
        sample_max_chars=settings.sample_max_chars,
    )
    return MetadataExtractionPipeline(stages, stage_timeout=settings.stage_timeout_seconds)


async def get_activity_tracker(
    activity_repo: IActivityRepository = Depends(get_activity_repository),
    book_repo: IBookRepository = Depends(get_book_repository),
    profile_repo: IUserProfileRepository = Depends(get_profile_repository),
) -> IActivityTracker:
    return ActivityTracker(
        activity_repository=activity_repo,
        book_repository=book_repo,
        profile_repository=profile_repo,
        recently_read_cap=settings.recently_read_cap,
    )


async def get_book_service(
    repo: IBookRepository = Depends(get_book_repository),
    storage: IStorageService = Depends(get_storage_service),
    extractor: IMetadataExtractor = Depends(get_metadata_extractor),
    tracker: IActivityTracker = Depends(get_activity_tracker),
    profile_repo: IUserProfileRepository = Depends(get_profile_repository),
) -> IBookService:
    """Get book service with dependencies."""
    return BookService(
        book_repository=repo,
        storage_service=storage,
        metadata_extractor=extractor,
        activity_tracker=tracker,
        profile_repository=profile_repo,
    )


async def get_recommendation_service(
    book_repo: IBookRepository = Depends(get_book_repository),
    profile_repo: IUserProfileRepository = Depends(get_profile_repository),
    activity_repo: IActivityRepository = Depends(get_activity_repository),
    event_repo: IRecommendationEventRepository = Depends(get_recommendation_event_repository),
) -> IRecommendationService:
    return RecommendationAggregator(
        book_repository=book_repo,
        profile_repository=profile_repo,
        activity_repository=activity_repo,
        event_repository=event_repo,
        similarity=ContentSimilarity(
            keyword_weight=settings.keyword_weight,
            category_weight=settings.category_weight,
            sentiment_weight=settings.sentiment_weight,
        ),
        candidate_pool_size=settings.candidate_pool_size,
        history_size=settings.behavior_history_size,
        default_session_minutes=settings.default_session_minutes,
        short_session_minutes=settings.short_session_minutes,
        page_count_threshold=settings.page_count_threshold,
    )


async def get_new_release_service(
    cache: TTLCache[list[NewRelease]] = Depends(get_new_release_cache),
) -> INewReleaseService:
    return NewReleaseService(
        nyt_client=NYTBestsellerClient(api_key=settings.nyt_api_key, timeout=settings.catalog_timeout_seconds),
        google_client=get_google_books_client(),
        cache=cache,
    )


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """Return the user id the upstream gateway authenticated.

    The identity provider sits in front of the API and forwards the caller's
    id in ``X-User-Id``.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()
