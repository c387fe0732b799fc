"""Tests for the activity tracker."""

import asyncio
import uuid

import pytest

from booknook.domain.entities import ActivityAction
from booknook.domain.exceptions import InvalidActivityError
from booknook.services.activity_tracker import ActivityTracker, parse_action
from conftest import make_book


@pytest.fixture
def tracker(activity_repo, book_repo, profile_repo):
    return ActivityTracker(activity_repo, book_repo, profile_repo)


def test_parse_action():
    assert parse_action("READ") is ActivityAction.READ
    assert parse_action(ActivityAction.RATE) is ActivityAction.RATE
    with pytest.raises(InvalidActivityError):
        parse_action("upload")
    with pytest.raises(InvalidActivityError):
        parse_action("like")


async def test_finished_read_records_read_and_complete(tracker, book_repo, activity_repo, profile_repo):
    book = await book_repo.create(make_book())
    await tracker.track("reader", book.id, ActivityAction.READ, {"progress": 100})
    await tracker.track("reader", book.id, ActivityAction.READ, {"progress": 100})

    events = await activity_repo.list_for_user("reader")
    assert sorted(e.action.value for e in events) == ["complete", "complete", "read", "read"]

    loaded = await book_repo.get_by_id(book.id)
    assert loaded.read_count == 2
    assert loaded.completion_count == 2

    profile = await profile_repo.get("reader")
    assert profile.recently_read_ids == [book.id]


async def test_partial_read_does_not_complete(tracker, book_repo, activity_repo):
    book = await book_repo.create(make_book())
    await tracker.track("reader", book.id, "read", {"progress": 40})
    events = await activity_repo.list_for_user("reader")
    assert [e.action for e in events] == [ActivityAction.READ]
    assert events[0].metadata == {"progress": 40}


async def test_view_and_bookmark(tracker, book_repo, profile_repo):
    book = await book_repo.create(make_book())
    await tracker.track("reader", book.id, ActivityAction.VIEW)
    await tracker.track("reader", book.id, ActivityAction.BOOKMARK)

    loaded = await book_repo.get_by_id(book.id)
    assert loaded.view_count == 1
    assert loaded.read_count == 0
    # Viewing is not reading; the profile exists but nothing was read.
    profile = await profile_repo.get("reader")
    assert profile is not None
    assert profile.recently_read == []


async def test_rate_updates_average(tracker, book_repo):
    book = await book_repo.create(make_book())
    await tracker.track("alice", book.id, ActivityAction.RATE, {"rating": 4})
    await tracker.track("bob", book.id, ActivityAction.RATE, {"rating": 2})
    loaded = await book_repo.get_by_id(book.id)
    assert loaded.average_rating == pytest.approx(3.0)
    assert len(loaded.ratings) == 2


@pytest.mark.parametrize("metadata", [None, {}, {"rating": "five"}, {"rating": True}])
async def test_rate_without_numeric_rating_is_rejected(tracker, book_repo, activity_repo, metadata):
    book = await book_repo.create(make_book())
    with pytest.raises(InvalidActivityError):
        await tracker.track("alice", book.id, ActivityAction.RATE, metadata)
    assert await activity_repo.list_for_user("alice") == []


async def test_unknown_action_is_rejected(tracker):
    with pytest.raises(InvalidActivityError):
        await tracker.track("alice", uuid.uuid4(), "upload")


async def test_concurrent_first_activity_from_new_user(tracker, book_repo, activity_repo, profile_repo):
    first = await book_repo.create(make_book(title="First"))
    second = await book_repo.create(make_book(title="Second"))

    await asyncio.gather(
        tracker.track("newbie", first.id, ActivityAction.READ, {"progress": 10}),
        tracker.track("newbie", second.id, ActivityAction.READ, {"progress": 20}),
    )

    events = await activity_repo.list_for_user("newbie")
    assert sorted(e.book_id for e in events) == sorted([first.id, second.id])
    assert (await book_repo.get_by_id(first.id)).read_count == 1
    assert (await book_repo.get_by_id(second.id)).read_count == 1
    profile = await profile_repo.get("newbie")
    assert set(profile.recently_read_ids) == {first.id, second.id}
