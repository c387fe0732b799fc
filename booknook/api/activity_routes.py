"""Activity tracking route."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from booknook.api.schemas import ActivityRequest, ActivityResponse
from booknook.core.dependencies import get_activity_tracker, get_book_repository, get_current_user_id
from booknook.domain.exceptions import InvalidActivityError
from booknook.domain.repositories import IBookRepository
from booknook.domain.services import IActivityTracker
from booknook.services.activity_tracker import parse_action

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/activity", tags=["activity"])


@router.post("", response_model=ActivityResponse, status_code=status.HTTP_202_ACCEPTED)
async def track_activity(
    body: ActivityRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    tracker: Annotated[IActivityTracker, Depends(get_activity_tracker)],
    book_repo: Annotated[IBookRepository, Depends(get_book_repository)],
) -> ActivityResponse:
    """Record a view, read, complete, bookmark or rate action.

    A ``read`` with ``metadata.progress >= 100`` also records ``complete``;
    ``rate`` needs ``metadata.rating``. A storage failure is logged and
    reported as ``recorded: false`` rather than as an error.
    """
    try:
        action = parse_action(body.action)
    except InvalidActivityError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if await book_repo.get_by_id(body.book_id) is None:
        raise HTTPException(status_code=404, detail="Book not found")

    try:
        await tracker.track(user_id, body.book_id, action, body.metadata)
    except InvalidActivityError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as exc:
        logger.warning("Tracking %s on %s for %s failed: %s", action.value, body.book_id, user_id, exc)
        return ActivityResponse(book_id=body.book_id, action=action, recorded=False)
    return ActivityResponse(book_id=body.book_id, action=action)
