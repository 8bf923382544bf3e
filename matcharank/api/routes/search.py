"""Search endpoints for the MatchaRank API."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from matcharank.api.dependencies import get_search_service
from matcharank.api.schemas import (
    AutocompleteResponse,
    ItemOut,
    SearchClickRequest,
    SearchPurchaseRequest,
    SearchResponseOut,
    StatusResponse,
    SuggestionOut,
)
from matcharank.search.service import (
    DEFAULT_AUTOCOMPLETE_LIMIT,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_SUGGESTIONS_LIMIT,
    SearchService,
)

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["search"])


def search_filters(
    providers: List[str] = Query(default=[]),
    grades: List[str] = Query(default=[]),
    origins: List[str] = Query(default=[]),
    flavors: List[str] = Query(default=[]),
    price_min: Optional[float] = None,
    price_max: Optional[float] = None,
    in_stock_only: bool = False,
    sort_by: str = "relevance",
) -> Dict[str, Any]:
    """Translate flat query parameters into a filters dict."""
    filters: Dict[str, Any] = {
        "providers": providers,
        "grades": grades,
        "origins": origins,
        "flavor_profiles": flavors,
        "in_stock_only": in_stock_only,
        "sort_by": sort_by,
    }
    if price_min is not None or price_max is not None:
        price_range: Dict[str, float] = {}
        if price_min is not None:
            price_range["min"] = price_min
        if price_max is not None:
            price_range["max"] = price_max
        filters["price_range"] = price_range
    return filters


@router.get("/search", response_model=SearchResponseOut)
def search(
    q: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = DEFAULT_SEARCH_LIMIT,
    offset: int = 0,
    filters: Dict[str, Any] = Depends(search_filters),
    service: SearchService = Depends(get_search_service),
) -> SearchResponseOut:
    """Fuzzy product search with filters and pagination.

    Example:
        GET /search?q=ceremonial%20uji&grades=ceremonial&price_max=50
    """
    logger.debug(f"Search request q={q!r}, limit={limit}, offset={offset}")
    response = service.search(q, filters, user_id=user_id, limit=limit, offset=offset)
    return SearchResponseOut(
        results=[ItemOut.model_validate(item) for item in response.results],
        total=response.total,
        limit=limit,
        offset=offset,
        analytics=response.analytics,
    )


@router.get("/search/facets")
def get_facets(
    q: Optional[str] = None,
    filters: Dict[str, Any] = Depends(search_filters),
    service: SearchService = Depends(get_search_service),
) -> Dict[str, Any]:
    return service.get_facets(q, filters)


@router.get("/search/autocomplete", response_model=AutocompleteResponse)
def autocomplete(
    q: str = "",
    limit: int = DEFAULT_AUTOCOMPLETE_LIMIT,
    service: SearchService = Depends(get_search_service),
) -> AutocompleteResponse:
    suggestions = service.get_autocomplete(q, limit)
    return AutocompleteResponse(
        query=q, suggestions=[SuggestionOut.model_validate(s) for s in suggestions]
    )


@router.get("/search/suggestions")
def suggestions(
    user_id: Optional[str] = None,
    limit: int = DEFAULT_SUGGESTIONS_LIMIT,
    service: SearchService = Depends(get_search_service),
) -> Dict[str, List[str]]:
    return {"suggestions": service.get_search_suggestions(user_id, limit)}


@router.post("/search/track-click", response_model=StatusResponse)
def track_click(
    body: SearchClickRequest,
    service: SearchService = Depends(get_search_service),
) -> StatusResponse:
    service.track_search_click(body.search_id, body.item_id, body.position)
    return StatusResponse()


@router.post("/search/track-purchase", response_model=StatusResponse)
def track_purchase(
    body: SearchPurchaseRequest,
    service: SearchService = Depends(get_search_service),
) -> StatusResponse:
    service.track_search_purchase(body.search_id, body.item_id)
    return StatusResponse()


@router.get("/analytics/search")
def search_analytics(
    days: int = 7,
    service: SearchService = Depends(get_search_service),
) -> Dict[str, Any]:
    return service.get_search_analytics(days)
