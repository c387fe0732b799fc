"""Status of the feature-extraction task started by ``POST /books``.

The upload response carries the Celery task id in ``X-Task-ID``. ``status``
is Celery's own state name (PENDING, STARTED, RETRY, SUCCESS or FAILURE);
an id Celery has never seen also reports PENDING.
"""

import logging
from typing import Optional

from celery.result import AsyncResult
from fastapi import APIRouter

from booknook.api.schemas import TaskStatusResponse
from booknook.infrastructure.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tasks", tags=["tasks"])


def _error_message(result: AsyncResult) -> Optional[str]:
    if result.state in ("FAILURE", "RETRY"):
        return str(result.result)
    return None


@router.get("/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(task_id: str) -> TaskStatusResponse:
    result = AsyncResult(task_id, app=celery_app)
    logger.debug("Feature task %s is %s", task_id, result.state)
    # Features are written onto the book itself; there is no task payload.
    return TaskStatusResponse(task_id=task_id, status=result.state, error=_error_message(result))
