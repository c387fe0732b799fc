"""Recommendation API routes."""

import logging
from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends

from booknook.api.schemas import BookResponse, RecommendationResponse, RecommendedBookResponse
from booknook.core.config import settings
from booknook.core.dependencies import get_current_user_id, get_recommendation_service
from booknook.domain.entities import RecommendationCandidate
from booknook.domain.services import IRecommendationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def _to_response(candidates: list[RecommendationCandidate], strategy: str) -> RecommendationResponse:
    recs = [
        RecommendedBookResponse(
            **BookResponse.model_validate(c.book).model_dump(),
            similarity_score=c.similarity_score,
            reason=c.reason,
            source=c.source,
        )
        for c in candidates
    ]
    return RecommendationResponse(recommendations=recs, total=len(recs), strategy=strategy)


@router.get("", response_model=RecommendationResponse)
async def get_user_recommendations(
    user_id: Annotated[str, Depends(get_current_user_id)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
    limit: int = 10,
    strategy: Optional[Literal["ai", "basic"]] = None,
) -> RecommendationResponse:
    """Personalised suggestions for the current user.

    ``strategy`` picks the variant; when omitted the configured
    ``recommendation_strategy`` is used:
      - ai    (content similarity + reading behaviour)
      - basic (collaborative + content similarity)

    Both backfill with popular books and never return a book the user has
    already read.
    """
    strategy = strategy or settings.recommendation_strategy
    if strategy == "ai":
        results = await recommendation_service.get_ai_recommendations(user_id, limit)
    else:
        results = await recommendation_service.get_recommendations(user_id, limit)
    return _to_response(results, strategy)


@router.get("/ai", response_model=RecommendationResponse)
async def get_ai_recommendations(
    user_id: Annotated[str, Depends(get_current_user_id)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
    limit: int = 10,
) -> RecommendationResponse:
    """Content + behaviour variant, annotated with similarity scores."""
    results = await recommendation_service.get_ai_recommendations(user_id, limit)
    return _to_response(results, "ai")
