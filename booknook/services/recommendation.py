"""Recommendation aggregator for BookNook.

Two variants share one merge/backfill path:

  * ``ai``    -- content-similarity branch + reading-behaviour branch
  * ``basic`` -- collaborative branch + content-similarity branch

Each branch is isolated: if it raises, it contributes nothing. Only a failure
to load the user's profile aborts the call, and that is answered with a
plain popularity ranking.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from collections import Counter
from datetime import datetime
from typing import Optional
from uuid import UUID

from booknook.domain.entities import (
    READING_ACTIONS,
    Book,
    RecommendationCandidate,
    RecommendationEvent,
    UserProfile,
)
from booknook.domain.exceptions import ProfileNotFoundError
from booknook.domain.repositories import (
    IActivityRepository,
    IBookRepository,
    IRecommendationEventRepository,
    IUserProfileRepository,
)
from booknook.domain.services import IRecommendationService
from booknook.services.similarity import ContentSimilarity, features_for

logger = logging.getLogger(__name__)

CONTENT_REASON = "Based on content similarity"
SHORT_READ_REASON = "Quick read based on your reading habits"
LONG_READ_REASON = "Immersive read based on your reading habits"
COLLABORATIVE_REASON = "Readers who read your books also read this"
FALLBACK_REASON = "Popular with readers"
BACKFILL_REASONS = {
    "ai": "Popular with other readers",
    "basic": "Popular among readers",
}

SESSION_MINUTES_KEY = "readingDurationMinutes"


def half(max_count: int) -> int:
    return math.ceil(max_count / 2)


# ======================================================================
# Branch 1 -- Content similarity
# ======================================================================
class ContentBranch:
    """Scores a candidate pool against the user's most recently read book."""

    def __init__(
        self,
        book_repository: IBookRepository,
        activity_repository: IActivityRepository,
        similarity: ContentSimilarity,
        candidate_pool_size: int = 50,
    ):
        self.book_repository = book_repository
        self.activity_repository = activity_repository
        self.similarity = similarity
        self.candidate_pool_size = candidate_pool_size

    async def latest_read_book_id(self, profile: UserProfile) -> Optional[UUID]:
        # Latest by the event's own timestamp, not by write order.
        events = await self.activity_repository.list_for_user(
            profile.user_id, actions=list(READING_ACTIONS), limit=1
        )
        if events:
            return events[0].book_id
        if profile.recently_read:
            return max(profile.recently_read, key=lambda entry: entry.timestamp).book_id
        return None

    async def recommend(
        self, profile: UserProfile, exclude_ids: set[UUID], limit: int,
    ) -> list[RecommendationCandidate]:
        source_id = await self.latest_read_book_id(profile)
        if source_id is None:
            return []
        source = await self.book_repository.get_by_id(source_id)
        if source is None:
            return []
        source_features = features_for(source)
        if not source_features.keywords:
            return []

        candidates = await self.book_repository.list_candidates(
            exclude_ids=list(exclude_ids | {source.id}), limit=self.candidate_pool_size
        )
        scored = [
            RecommendationCandidate(
                book=book,
                similarity_score=round(self.similarity.score(source_features, features_for(book)), 4),
                reason=CONTENT_REASON,
                source="content",
            )
            for book in candidates
        ]
        # sort() is stable: equal scores keep the pool order.
        scored.sort(key=lambda c: c.similarity_score, reverse=True)
        logger.debug("Content branch scored %d candidates against %s", len(scored), source.id)
        return scored[:limit]


# ======================================================================
# Branch 2 -- Reading behaviour
# ======================================================================
class BehavioralBranch:
    """Short-session readers get short books, long-session readers long ones."""

    def __init__(
        self,
        book_repository: IBookRepository,
        activity_repository: IActivityRepository,
        history_size: int = 20,
        default_session_minutes: float = 30.0,
        short_session_minutes: float = 20.0,
        page_count_threshold: int = 300,
    ):
        self.book_repository = book_repository
        self.activity_repository = activity_repository
        self.history_size = history_size
        self.default_session_minutes = default_session_minutes
        self.short_session_minutes = short_session_minutes
        self.page_count_threshold = page_count_threshold

    def mean_session_minutes(self, durations: list[float]) -> float:
        if not durations:
            return self.default_session_minutes
        return sum(durations) / len(durations)

    async def recommend(
        self, profile: UserProfile, exclude_ids: set[UUID], limit: int,
    ) -> list[RecommendationCandidate]:
        events = await self.activity_repository.list_for_user(
            profile.user_id, actions=list(READING_ACTIONS), limit=self.history_size
        )
        if not events:
            return []

        durations = []
        for event in events:
            value = event.metadata.get(SESSION_MINUTES_KEY)
            if isinstance(value, (int, float)) and value > 0:
                durations.append(float(value))
        mean = self.mean_session_minutes(durations)
        short = mean < self.short_session_minutes

        read_ids = exclude_ids | {event.book_id for event in events}
        books = await self.book_repository.list_by_page_count(
            threshold=self.page_count_threshold,
            shorter=short,
            exclude_ids=list(read_ids),
            limit=limit * 2,
        )
        books.sort(key=lambda b: b.read_count, reverse=True)
        reason = SHORT_READ_REASON if short else LONG_READ_REASON
        logger.debug("Behavioral branch: mean session %.1f min, short=%s", mean, short)
        return [
            RecommendationCandidate(book=book, reason=reason, source="behavioral")
            for book in books[:limit]
        ]


# ======================================================================
# Branch 3 -- Collaborative filtering
# ======================================================================
class CollaborativeBranch:
    """Books read by people who read the same books, ranked by frequency."""

    def __init__(self, book_repository: IBookRepository, activity_repository: IActivityRepository):
        self.book_repository = book_repository
        self.activity_repository = activity_repository

    async def recommend(
        self, profile: UserProfile, exclude_ids: set[UUID], limit: int,
    ) -> list[RecommendationCandidate]:
        my_books = profile.recently_read_ids
        if not my_books:
            return []

        frequency: Counter[UUID] = Counter()
        for book_id in my_books:
            readers = await self.activity_repository.list_readers_of_book(book_id, profile.user_id)
            if not readers:
                continue
            for other_books in (await self.activity_repository.list_books_read_by(readers)).values():
                for other_book_id in other_books:
                    if other_book_id not in exclude_ids and other_book_id not in my_books:
                        frequency[other_book_id] += 1

        top_ids = [book_id for book_id, _ in frequency.most_common(limit)]
        books = await self.book_repository.get_many(top_ids)
        return [
            RecommendationCandidate(book=book, reason=COLLABORATIVE_REASON, source="collaborative")
            for book in books
            if not book.private
        ]


# ======================================================================
# Aggregator
# ======================================================================
class RecommendationAggregator(IRecommendationService):

    def __init__(
        self,
        book_repository: IBookRepository,
        profile_repository: IUserProfileRepository,
        activity_repository: IActivityRepository,
        event_repository: Optional[IRecommendationEventRepository] = None,
        similarity: Optional[ContentSimilarity] = None,
        candidate_pool_size: int = 50,
        history_size: int = 20,
        default_session_minutes: float = 30.0,
        short_session_minutes: float = 20.0,
        page_count_threshold: int = 300,
    ):
        self.book_repository = book_repository
        self.profile_repository = profile_repository
        self.activity_repository = activity_repository
        self.event_repository = event_repository
        self._content = ContentBranch(
            book_repository, activity_repository, similarity or ContentSimilarity(), candidate_pool_size
        )
        self._behavioral = BehavioralBranch(
            book_repository,
            activity_repository,
            history_size=history_size,
            default_session_minutes=default_session_minutes,
            short_session_minutes=short_session_minutes,
            page_count_threshold=page_count_threshold,
        )
        self._collaborative = CollaborativeBranch(book_repository, activity_repository)

    # --- Public variants ---
    async def get_recommendations(self, user_id: str, max_count: int = 10) -> list[RecommendationCandidate]:
        return await self._recommend(user_id, max_count, "basic")

    async def get_ai_recommendations(self, user_id: str, max_count: int = 10) -> list[RecommendationCandidate]:
        return await self._recommend(user_id, max_count, "ai")

    async def get_popular_books(self, limit: int = 10) -> list[Book]:
        return await self.book_repository.list_popular(limit)

    async def get_similar_books(self, book_id: UUID, limit: int = 5) -> list[Book]:
        """Same author first, then books sharing a tag."""
        source = await self.book_repository.get_by_id(book_id)
        if source is None:
            return []
        similar: list[Book] = []
        if source.author:
            similar = await self.book_repository.list_by_author(source.author, [source.id], limit)
        if len(similar) < limit and source.tags:
            seen = [source.id] + [book.id for book in similar]
            similar += await self.book_repository.list_by_tags(source.tags, seen, limit - len(similar))
        return similar[:limit]

    # --- Shared path ---
    async def _recommend(self, user_id: str, max_count: int, variant: str) -> list[RecommendationCandidate]:
        if max_count <= 0:
            return []
        try:
            return await self._recommend_for_profile(user_id, max_count, variant)
        except ProfileNotFoundError as exc:
            logger.warning("Recommendation profile load failed for %s: %s; serving popularity", user_id, exc)
        except Exception as exc:
            logger.error("Recommendation failed for %s: %s; serving popularity", user_id, exc, exc_info=True)
        return await self._popularity_fallback(max_count)

    async def _recommend_for_profile(
        self, user_id: str, max_count: int, variant: str,
    ) -> list[RecommendationCandidate]:
        profile = await self._load_profile(user_id)
        backfill_reason = BACKFILL_REASONS[variant]

        if profile is None or not profile.recently_read:
            logger.info("Cold start for user %s; popularity only", user_id)
            books = await self.book_repository.list_popular(max_count)
            result = [
                RecommendationCandidate(book=book, reason=backfill_reason, source="popularity")
                for book in books
            ]
            await self._record(user_id, variant, result)
            return result

        read_ids = set(profile.recently_read_ids)
        limit = half(max_count)
        if variant == "ai":
            first, second = self._content, self._behavioral
        else:
            first, second = self._collaborative, self._content

        first_results, second_results = await asyncio.gather(
            self._run_branch(first, profile, read_ids, limit),
            self._run_branch(second, profile, read_ids, limit),
        )
        merged = self._merge([first_results, second_results], read_ids)

        if len(merged) < max_count:
            merged += await self._backfill(merged, read_ids, max_count - len(merged), backfill_reason)

        result = merged[:max_count]
        logger.info(
            "Recommendations for %s (%s): %d results from %s",
            user_id, variant, len(result), dict(Counter(c.source for c in result)),
        )
        await self._record(user_id, variant, result)
        return result

    async def _load_profile(self, user_id: str) -> Optional[UserProfile]:
        try:
            return await self.profile_repository.get(user_id)
        except Exception as exc:
            raise ProfileNotFoundError(f"Could not load profile for {user_id}: {exc}") from exc

    @staticmethod
    async def _run_branch(branch, profile: UserProfile, exclude_ids: set[UUID], limit: int):
        try:
            return await branch.recommend(profile, exclude_ids, limit)
        except Exception as exc:
            logger.warning("%s failed: %s", type(branch).__name__, exc)
            return []

    @staticmethod
    def _merge(
        branches: list[list[RecommendationCandidate]], read_ids: set[UUID],
    ) -> list[RecommendationCandidate]:
        """Concatenate in branch order; first occurrence wins, read books dropped."""
        seen: set[UUID] = set()
        merged: list[RecommendationCandidate] = []
        for candidates in branches:
            for candidate in candidates:
                book_id = candidate.book.id
                if book_id in seen or book_id in read_ids:
                    continue
                seen.add(book_id)
                merged.append(candidate)
        return merged

    async def _backfill(
        self,
        selected: list[RecommendationCandidate],
        read_ids: set[UUID],
        needed: int,
        reason: str,
    ) -> list[RecommendationCandidate]:
        exclude = list(read_ids | {c.book.id for c in selected})
        try:
            books = await self.book_repository.list_popular(needed, exclude_ids=exclude)
        except Exception as exc:
            logger.warning("Popularity backfill failed: %s", exc)
            return []
        return [RecommendationCandidate(book=book, reason=reason, source="popularity") for book in books]

    async def _popularity_fallback(self, max_count: int) -> list[RecommendationCandidate]:
        try:
            books = await self.book_repository.list_popular(max_count)
        except Exception as exc:
            logger.error("Popularity fallback failed: %s", exc)
            return []
        return [RecommendationCandidate(book=book, reason=FALLBACK_REASON, source="popularity") for book in books]

    async def _record(self, user_id: str, variant: str, result: list[RecommendationCandidate]) -> None:
        if self.event_repository is None:
            return
        event = RecommendationEvent(
            id=uuid.uuid4(),
            user_id=user_id,
            variant=variant,
            source_counts=dict(Counter(c.source for c in result)),
            total=len(result),
            timestamp=datetime.utcnow(),
        )
        try:
            await self.event_repository.record(event)
        except Exception as exc:
            logger.warning("Could not record recommendation event for %s: %s", user_id, exc)
