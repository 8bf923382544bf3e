"""Recommendation endpoints for the MatchaRank API.

Thin transport over `RecommendationEngine`: personalized recommendations,
similar products, outcome tracking and per-variant analytics.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends

from matcharank.api.dependencies import get_engine
from matcharank.api.schemas import (
    ItemOut,
    RecommendationListResponse,
    RecommendationOut,
    SimilarItemsResponse,
    StatusResponse,
)
from matcharank.recommender.engine import (
    DEFAULT_LIMIT,
    DEFAULT_SIMILAR_ITEMS_LIMIT,
    RecommendationEngine,
)

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(tags=["recommendations"])


@router.get("/recommendations/{user_id}", response_model=RecommendationListResponse)
def get_recommendations(
    user_id: str,
    limit: int = DEFAULT_LIMIT,
    engine: RecommendationEngine = Depends(get_engine),
) -> RecommendationListResponse:
    """Get personalized recommendations for a user.

    Users without history receive trending items.

    Example:
        GET /recommendations/u42?limit=5
    """
    logger.info(f"Generating recommendations for user {user_id}, limit={limit}")
    recommendations = engine.generate_recommendations(user_id, limit)
    return RecommendationListResponse(
        user_id=user_id,
        recommendations=[RecommendationOut.model_validate(r) for r in recommendations],
        count=len(recommendations),
    )


@router.post("/recommendations/{recommendation_id}/click", response_model=StatusResponse)
def track_click(
    recommendation_id: str,
    engine: RecommendationEngine = Depends(get_engine),
) -> StatusResponse:
    engine.track_recommendation_click(recommendation_id)
    return StatusResponse()


@router.post("/recommendations/{recommendation_id}/purchase", response_model=StatusResponse)
def track_purchase(
    recommendation_id: str,
    engine: RecommendationEngine = Depends(get_engine),
) -> StatusResponse:
    engine.track_recommendation_purchase(recommendation_id)
    return StatusResponse()


@router.get("/products/{item_id}/similar", response_model=SimilarItemsResponse)
def get_similar_items(
    item_id: str,
    limit: int = DEFAULT_SIMILAR_ITEMS_LIMIT,
    engine: RecommendationEngine = Depends(get_engine),
) -> SimilarItemsResponse:
    items = engine.get_similar_items(item_id, limit)
    return SimilarItemsResponse(
        item_id=item_id, similar=[ItemOut.model_validate(i) for i in items]
    )


@router.get("/analytics/recommendations")
def get_recommendation_analytics(
    experiment: Optional[str] = None,
    days: int = 7,
    engine: RecommendationEngine = Depends(get_engine),
) -> Dict:
    return engine.get_recommendation_analytics(experiment, days)
