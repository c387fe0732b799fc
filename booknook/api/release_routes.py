"""New-release listing route."""

from typing import Annotated

from fastapi import APIRouter, Depends

from booknook.api.schemas import NewReleaseResponse
from booknook.core.dependencies import get_current_user_id, get_new_release_service
from booknook.domain.services import INewReleaseService

router = APIRouter(prefix="/releases", tags=["releases"])


@router.get("/new", response_model=list[NewReleaseResponse])
async def new_releases(
    user_id: Annotated[str, Depends(get_current_user_id)],
    release_service: Annotated[INewReleaseService, Depends(get_new_release_service)],
    limit: int = 20,
) -> list[NewReleaseResponse]:
    """NYT best-sellers plus recently published Google Books titles, cached for a day."""
    releases = await release_service.fetch_new_releases(limit)
    return [NewReleaseResponse.model_validate(r) for r in releases]
