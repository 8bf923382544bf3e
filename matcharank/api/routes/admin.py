"""Operational endpoints: index rebuild and cache refresh."""

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from matcharank.api.dependencies import get_engine, get_search_service
from matcharank.recommender.engine import RecommendationEngine
from matcharank.search.service import SearchService

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/search/rebuild-index")
def rebuild_index(service: SearchService = Depends(get_search_service)) -> Dict[str, int]:
    """Rebuild the search index from the catalog and clear search caches."""
    logger.info("Rebuilding search index...")
    return {"items_indexed": service.rebuild_index()}


@router.post("/cache/refresh")
def refresh_caches(
    engine: RecommendationEngine = Depends(get_engine),
    service: SearchService = Depends(get_search_service),
) -> Dict[str, int]:
    return {
        "recommendation_entries_cleared": engine.refresh_all_caches(),
        "search_entries_cleared": service.refresh_caches(),
    }
