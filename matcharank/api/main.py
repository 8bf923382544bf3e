"""FastAPI application main module.

Builds the MatchaRank application: wires the data store, cache,
recommendation engine and search service onto `app.state`, registers the
routers and maps `MatchaRankError` to JSON error responses.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from matcharank import __version__
from matcharank.api.logging_config import RequestLoggingMiddleware, setup_logging
from matcharank.api.routes import admin, recommend, search
from matcharank.config import Settings, settings as default_settings
from matcharank.exceptions import MatchaRankError
from matcharank.recommender.cache import Cache, create_cache
from matcharank.recommender.engine import RecommendationEngine
from matcharank.recommender.store import DataStore, create_store_from_csv
from matcharank.search.service import SearchService

# Configure module logger
logger = logging.getLogger(__name__)


def create_app(
    store: Optional[DataStore] = None,
    cache: Optional[Cache] = None,
    app_settings: Optional[Settings] = None,
    configure_logging: bool = False,
) -> FastAPI:
    """Create the API application.

    Args:
        store: Data store to serve from. Defaults to an in-memory store seeded
            from the configured CSV files.
        cache: Cache backend. Defaults to Redis when `redis_url` is set,
            otherwise an in-memory cache.
        app_settings: Settings to use instead of the environment-derived ones.
        configure_logging: Install the JSON log handler on startup.

    Returns:
        The configured FastAPI application.
    """
    app_settings = app_settings or default_settings
    if store is None:
        store = create_store_from_csv(app_settings.catalog_csv, app_settings.interactions_csv)
    if cache is None:
        cache = create_cache(app_settings.redis_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_logging(app_settings.log_level, json_format=app_settings.log_json)
        if app.state.search.snapshot is None:
            try:
                app.state.search.rebuild_index()
            except MatchaRankError as e:
                # Search rebuilds lazily on first request
                logger.warning(f"Initial search index build failed: {e.message}")
        yield

    app = FastAPI(
        title=f"{app_settings.app_name} API",
        description="Personalized recommendations and fuzzy search for a matcha marketplace",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.engine = RecommendationEngine(store, cache, settings=app_settings)
    app.state.search = SearchService(store, cache, settings=app_settings)

    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(MatchaRankError)
    async def handle_matcharank_error(request: Request, exc: MatchaRankError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            f"Request failed: {exc.message}",
            extra={"path": str(request.url.path), "status_code": exc.status_code},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder({"error": exc.message, "details": exc.details}),
        )

    @app.get("/ping")
    def ping() -> Dict[str, str]:
        """Liveness check.

        Example:
            >>> response = client.get("/ping")
            >>> assert response.json() == {"status": "ok"}
        """
        return {"status": "ok"}

    @app.get("/health")
    def health() -> Dict[str, Any]:
        """Readiness of the store, cache and search index."""
        recommendations = app.state.engine.health_check()
        search_health = app.state.search.health_check()
        statuses = {recommendations["status"], search_health["status"]}
        if "unhealthy" in statuses:
            status = "unhealthy"
        elif "degraded" in statuses:
            status = "degraded"
        else:
            status = "healthy"
        return {
            "status": status,
            "app": app_settings.app_name,
            "env": app_settings.app_env,
            "details": {
                "recommendations": recommendations["details"],
                "search": search_health["details"],
            },
        }

    app.include_router(recommend.router)
    app.include_router(search.router)
    app.include_router(admin.router)
    return app


app = create_app(configure_logging=True)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "matcharank.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
