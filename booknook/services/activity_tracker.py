"""Activity tracking: one immutable event per user action, plus its side effects."""

import logging
import uuid
from datetime import datetime
from typing import Optional
from uuid import UUID

from booknook.domain.entities import (
    READING_ACTIONS,
    ActivityAction,
    RatingEntry,
    UserActivityEvent,
)
from booknook.domain.exceptions import InvalidActivityError
from booknook.domain.repositories import (
    IActivityRepository,
    IBookRepository,
    IUserProfileRepository,
)
from booknook.domain.services import IActivityTracker

logger = logging.getLogger(__name__)

COUNTERS = {
    ActivityAction.VIEW: "view_count",
    ActivityAction.READ: "read_count",
    ActivityAction.COMPLETE: "completion_count",
}


def parse_action(action) -> ActivityAction:
    if isinstance(action, ActivityAction):
        return action
    try:
        return ActivityAction(str(action).lower())
    except ValueError:
        raise InvalidActivityError(f"Unknown activity action: {action!r}") from None


class ActivityTracker(IActivityTracker):
    """Records activity and keeps book counters and profiles in step.

    A ``read`` carrying ``progress >= 100`` also records a ``complete``.
    """

    def __init__(
        self,
        activity_repository: IActivityRepository,
        book_repository: IBookRepository,
        profile_repository: IUserProfileRepository,
        recently_read_cap: int = 20,
    ):
        self.activity_repository = activity_repository
        self.book_repository = book_repository
        self.profile_repository = profile_repository
        self.recently_read_cap = recently_read_cap

    async def track(
        self,
        user_id: str,
        book_id: UUID,
        action: ActivityAction,
        metadata: Optional[dict] = None,
    ) -> None:
        action = parse_action(action)
        metadata = dict(metadata or {})

        if action == ActivityAction.RATE:
            rating = metadata.get("rating")
            if not isinstance(rating, (int, float)) or isinstance(rating, bool):
                raise InvalidActivityError("A rate action needs a numeric 'rating'")

        await self.profile_repository.get_or_create(user_id)
        await self._record(user_id, book_id, action, metadata)

        if action == ActivityAction.READ and _progress(metadata) >= 100:
            await self._record(user_id, book_id, ActivityAction.COMPLETE, metadata)

    async def _record(
        self, user_id: str, book_id: UUID, action: ActivityAction, metadata: dict,
    ) -> None:
        event = UserActivityEvent(
            id=uuid.uuid4(),
            user_id=user_id,
            book_id=book_id,
            action=action,
            timestamp=datetime.utcnow(),
            metadata=metadata,
        )
        await self.activity_repository.append(event)
        logger.debug("Tracked %s on %s for %s", action.value, book_id, user_id)

        counter = COUNTERS.get(action)
        if counter:
            await self.book_repository.increment_counter(book_id, counter)
        elif action == ActivityAction.RATE:
            entry = RatingEntry(user_id=user_id, rating=float(metadata["rating"]), timestamp=event.timestamp)
            average = await self.book_repository.add_rating(book_id, entry)
            logger.info("Book %s rated %.1f by %s (average now %s)", book_id, entry.rating, user_id, average)

        if action in READING_ACTIONS:
            added = await self.profile_repository.add_recently_read(
                user_id, book_id, self.recently_read_cap
            )
            if added:
                logger.info("Added %s to recently read for %s", book_id, user_id)


def _progress(metadata: dict) -> float:
    value = metadata.get("progress")
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0
