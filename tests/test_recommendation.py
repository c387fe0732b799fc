"""Tests for the recommendation aggregator and its branches."""

import uuid
from datetime import timedelta

import pytest

from booknook.domain.entities import ActivityAction, ContentFeatures, UserActivityEvent
from booknook.services.recommendation import (
    BACKFILL_REASONS,
    FALLBACK_REASON,
    BehavioralBranch,
    RecommendationAggregator,
    half,
)
from conftest import BASE_TIME, make_book

HARBOR = ContentFeatures(keywords=["harbor", "storm", "ship"], categories=["fiction"], sentiment_score=2)
NEARBY = ContentFeatures(keywords=["storm", "ship", "captain"], categories=["fiction"], sentiment_score=0)


class RecordingEventRepo:
    def __init__(self):
        self.events = []

    async def record(self, event):
        self.events.append(event)


class BrokenEventRepo:
    async def record(self, event):
        raise RuntimeError("analytics store down")


class BrokenProfileRepo:
    async def get(self, user_id):
        raise RuntimeError("profile store down")


async def mark_read(profile_repo, activity_repo, user_id, book_id, minutes=0, metadata=None):
    await activity_repo.append(
        UserActivityEvent(
            id=uuid.uuid4(),
            user_id=user_id,
            book_id=book_id,
            action=ActivityAction.READ,
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            metadata=metadata or {},
        )
    )
    await profile_repo.add_recently_read(user_id, book_id, cap=20)


@pytest.fixture
def events():
    return RecordingEventRepo()


@pytest.fixture
def aggregator(book_repo, profile_repo, activity_repo, events):
    return RecommendationAggregator(book_repo, profile_repo, activity_repo, events)


@pytest.fixture
async def library(book_repo, profile_repo, activity_repo):
    """A reader who has read the harbor book, and a small catalog around it."""
    books = {
        "source": make_book("Source", features=HARBOR, page_count=250),
        "twin": make_book("Twin", features=HARBOR, page_count=100),
        "nearby": make_book("Nearby", features=NEARBY, page_count=500),
        "long": make_book("Long", page_count=800, read_count=50),
        "popular": make_book("Popular", read_count=40),
        "private": make_book("Private", features=HARBOR, private=True, read_count=99),
    }
    for book in books.values():
        await book_repo.create(book)
    await mark_read(profile_repo, activity_repo, "reader", books["source"].id)
    return books


def test_half_rounds_up():
    assert [half(n) for n in (1, 2, 5, 10)] == [1, 1, 3, 5]


# ---------------------------------------------------------------------------
# Cold start and fallbacks
# ---------------------------------------------------------------------------
async def test_cold_start_is_popularity_ordered(aggregator, book_repo, events):
    for n in range(12):
        await book_repo.create(make_book(f"Book {n}", read_count=(n * 7) % 12))

    results = await aggregator.get_ai_recommendations("newcomer", 10)
    counts = [c.book.read_count for c in results]
    assert len(results) == 10
    assert counts == sorted(counts, reverse=True)
    assert {c.reason for c in results} == {BACKFILL_REASONS["ai"]}
    assert {c.source for c in results} == {"popularity"}
    assert events.events[0].source_counts == {"popularity": 10}


async def test_non_positive_max_returns_nothing(aggregator, library):
    assert await aggregator.get_ai_recommendations("reader", 0) == []
    assert await aggregator.get_recommendations("reader", -3) == []


async def test_profile_failure_serves_plain_popularity(book_repo, activity_repo, library):
    events = RecordingEventRepo()
    aggregator = RecommendationAggregator(book_repo, BrokenProfileRepo(), activity_repo, events)
    results = await aggregator.get_recommendations("reader", 2)
    assert [c.book.title for c in results] == ["Long", "Popular"]
    assert {c.reason for c in results} == {FALLBACK_REASON}
    assert events.events == []


async def test_analytics_failure_is_tolerated(book_repo, profile_repo, activity_repo, library):
    aggregator = RecommendationAggregator(book_repo, profile_repo, activity_repo, BrokenEventRepo())
    results = await aggregator.get_ai_recommendations("reader", 4)
    assert len(results) == 4


# ---------------------------------------------------------------------------
# Warm paths
# ---------------------------------------------------------------------------
async def test_ai_merges_content_then_behavior_then_backfill(aggregator, library, events):
    results = await aggregator.get_ai_recommendations("reader", 4)

    assert [c.book.title for c in results] == ["Twin", "Nearby", "Long", "Popular"]
    assert [c.source for c in results] == ["content", "content", "behavioral", "popularity"]
    assert results[0].similarity_score == 1.0
    assert 0 < results[1].similarity_score < 1
    assert results[3].reason == BACKFILL_REASONS["ai"]

    event = events.events[-1]
    assert event.variant == "ai"
    assert event.total == 4
    assert event.source_counts == {"content": 2, "behavioral": 1, "popularity": 1}


@pytest.mark.parametrize("max_count", [1, 2, 3, 5, 10])
async def test_results_are_unique_unread_and_capped(aggregator, library, max_count):
    for variant in (aggregator.get_ai_recommendations, aggregator.get_recommendations):
        results = await variant("reader", max_count)
        ids = [c.book.id for c in results]
        assert len(ids) <= max_count
        assert len(ids) == len(set(ids))
        assert library["source"].id not in ids
        assert library["private"].id not in ids


async def test_failing_branch_contributes_nothing(aggregator, library, monkeypatch):
    async def explode(*args, **kwargs):
        raise RuntimeError("content index unavailable")

    monkeypatch.setattr(aggregator._content, "recommend", explode)
    results = await aggregator.get_ai_recommendations("reader", 4)

    assert [c.source for c in results[:2]] == ["behavioral", "behavioral"]
    assert [c.book.title for c in results] == ["Long", "Nearby", "Popular", "Twin"]


async def test_basic_variant_uses_collaborative_first(
    aggregator, book_repo, profile_repo, activity_repo, events,
):
    shared = await book_repo.create(make_book("Shared"))
    often = await book_repo.create(make_book("Often"))
    once = await book_repo.create(make_book("Once"))
    await book_repo.create(make_book("Filler", read_count=5))

    await mark_read(profile_repo, activity_repo, "me", shared.id, minutes=1)
    await mark_read(profile_repo, activity_repo, "alice", shared.id, minutes=2)
    await mark_read(profile_repo, activity_repo, "alice", often.id, minutes=3)
    await mark_read(profile_repo, activity_repo, "bob", shared.id, minutes=4)
    await mark_read(profile_repo, activity_repo, "bob", often.id, minutes=5)
    await mark_read(profile_repo, activity_repo, "bob", once.id, minutes=6)

    results = await aggregator.get_recommendations("me", 4)
    assert [c.book.id for c in results[:2]] == [often.id, once.id]
    assert [c.source for c in results[:2]] == ["collaborative", "collaborative"]
    assert results[2].book.title == "Filler"
    assert results[2].reason == BACKFILL_REASONS["basic"]
    assert shared.id not in [c.book.id for c in results]
    assert events.events[-1].variant == "basic"


async def test_behavioral_branch_prefers_short_books_for_short_sessions(book_repo, profile_repo, activity_repo):
    read = await book_repo.create(make_book("Read"))
    short = await book_repo.create(make_book("Short", page_count=90))
    await book_repo.create(make_book("Long", page_count=900))
    await mark_read(profile_repo, activity_repo, "reader", read.id, metadata={"readingDurationMinutes": 10})
    await mark_read(profile_repo, activity_repo, "reader", read.id, minutes=1, metadata={"readingDurationMinutes": 15})

    branch = BehavioralBranch(book_repo, activity_repo)
    profile = await profile_repo.get("reader")
    results = await branch.recommend(profile, set(profile.recently_read_ids), 5)
    assert [c.book.id for c in results] == [short.id]
    assert branch.mean_session_minutes([]) == 30.0


async def test_similar_books_author_then_tags(aggregator, book_repo):
    source = await book_repo.create(make_book("Source", author="Mara Linde", tags=["sea"]))
    same_author = await book_repo.create(make_book("Second", author="Mara Linde"))
    tagged = await book_repo.create(make_book("Tagged", tags=["sea"]))
    await book_repo.create(make_book("Unrelated", tags=["space"]))

    similar = await aggregator.get_similar_books(source.id, 5)
    assert [b.id for b in similar] == [same_author.id, tagged.id]
    assert await aggregator.get_similar_books(uuid.uuid4()) == []
