"""FastAPI dependencies resolving the services held on `app.state`."""

from fastapi import Request

from matcharank.recommender.engine import RecommendationEngine
from matcharank.search.service import SearchService


def get_engine(request: Request) -> RecommendationEngine:
    return request.app.state.engine


def get_search_service(request: Request) -> SearchService:
    return request.app.state.search
