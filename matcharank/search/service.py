"""Search service.

Exposes fuzzy search, facets, autocomplete, query suggestions and search
analytics over the current `IndexSnapshot`. Results are cached per query,
filters and page; every search is recorded for analytics without ever
failing the caller.
"""

import logging
import threading
import time
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from matcharank.config import Settings, settings as default_settings
from matcharank.exceptions import (
    IndexUnavailableError,
    InvalidRequestError,
    MatchaRankError,
    StoreUnavailableError,
)
from matcharank.recommender.cache import Cache, TolerantCache
from matcharank.recommender.models import AnalyticsEvent, CatalogItem, SearchQueryRecord
from matcharank.recommender.store import DataStore
from matcharank.search.facets import Suggestion, calculate_facets, gather_suggestions
from matcharank.search.index import (
    MIN_QUERY_LENGTH,
    IndexSnapshot,
    build_snapshot,
    load_snapshot,
    save_snapshot,
)
from matcharank.search.ranker import (
    BASELINE_RELEVANCE,
    SearchFilters,
    apply_filters,
    rank_results,
)
from matcharank.utils import normalize_text, retry_read, utc_now, validate_count

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 20
DEFAULT_AUTOCOMPLETE_LIMIT = 10
DEFAULT_SUGGESTIONS_LIMIT = 5

CTR_INCREMENT = 0.1
POPULAR_QUERY_WINDOW_DAYS = 30
PERSONAL_QUERY_WINDOW_DAYS = 30
TRENDING_QUERY_WINDOW_DAYS = 7
TOP_QUERIES_LIMIT = 10

SEARCH_CACHE_PREFIXES = ("search:", "search_facets:", "autocomplete:", "search_analytics:")

FiltersInput = Union[SearchFilters, Dict[str, Any], None]


@dataclass
class SearchResponse:
    results: List[CatalogItem]
    total: int
    analytics: Dict[str, Any] = field(default_factory=dict)


def search_cache_key(query: str, filters: SearchFilters, limit: int, offset: int) -> str:
    return f"search:{query}:{filters.fingerprint()}:{limit}:{offset}"


def facets_cache_key(query: str, filters: SearchFilters) -> str:
    return f"search_facets:{query}:{filters.fingerprint()}"


def autocomplete_cache_key(query: str, limit: int) -> str:
    return f"autocomplete:{query}:{limit}"


def parse_filters(filters: FiltersInput) -> SearchFilters:
    """Coerce caller-supplied filters, rejecting malformed ones.

    Raises:
        InvalidRequestError: If the filters fail validation.
    """
    if filters is None:
        return SearchFilters()
    if isinstance(filters, SearchFilters):
        return filters
    try:
        return SearchFilters.model_validate(filters)
    except ValidationError as e:
        raise InvalidRequestError(
            "Invalid search filters",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e


class SearchService:
    """Search operations over an atomically swapped index snapshot."""

    def __init__(
        self,
        store: DataStore,
        cache: Cache,
        settings: Optional[Settings] = None,
        log: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.logger = log or logger
        self.cache = TolerantCache(cache, self.logger)
        self.clock = clock

        self._snapshot: Optional[IndexSnapshot] = None
        self._rebuild_lock = threading.Lock()

        if self.settings.index_snapshot_path:
            self._snapshot = load_snapshot(
                self.settings.index_snapshot_path,
                max_age_seconds=self.settings.index_snapshot_ttl,
                now=self.clock(),
            )

    # Index lifecycle

    @property
    def snapshot(self) -> Optional[IndexSnapshot]:
        return self._snapshot

    def rebuild_index(self) -> int:
        """Rebuild the index from the catalog and publish it in one swap.

        Downstream caches (results, facets, autocomplete, analytics) are
        cleared after the new snapshot is visible.

        Returns:
            Number of indexed items.

        Raises:
            StoreUnavailableError: If the catalog cannot be read.
        """
        start_time = time.time()
        with self._rebuild_lock:
            items = retry_read(lambda: self.store.list_items(), "list_items", log=self.logger)
            snapshot = build_snapshot(items)
            self._snapshot = snapshot

        if self.settings.index_snapshot_path:
            try:
                save_snapshot(snapshot, self.settings.index_snapshot_path)
            except OSError as e:
                self.logger.warning(
                    "Failed to save search index snapshot",
                    extra={"degraded": True, "path": self.settings.index_snapshot_path, "error": str(e)},
                )

        cleared = self._clear_caches()
        self.logger.info(
            "Search index rebuilt",
            extra={
                "items_indexed": len(snapshot),
                "caches_cleared": cleared,
                "build_time_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return len(snapshot)

    def _current_snapshot(self) -> IndexSnapshot:
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        self.logger.info("Search index missing, rebuilding before serving")
        try:
            self.rebuild_index()
        except StoreUnavailableError as e:
            raise IndexUnavailableError({"reason": e.message}) from e
        return self._snapshot

    def refresh_caches(self) -> int:
        """Clear cached search output without rebuilding the index."""
        cleared = self._clear_caches()
        self.logger.info(f"Refreshed search caches, cleared {cleared} entries")
        return cleared

    def _clear_caches(self) -> int:
        return sum(self.cache.delete_prefix(prefix) for prefix in SEARCH_CACHE_PREFIXES)

    def _cache_from_snapshot(
        self, key: str, value: Any, ttl: int, snapshot: Optional[IndexSnapshot]
    ) -> None:
        """Cache output computed from `snapshot` unless a rebuild replaced it.

        The identity check runs again after the write, so a swap landing during
        the write leaves nothing cached.
        """
        if snapshot is None:
            self.cache.set(key, value, ttl)
            return
        if self._snapshot is not snapshot:
            return
        self.cache.set(key, value, ttl)
        if self._snapshot is not snapshot:
            self.cache.delete(key)

    # Search

    def search(
        self,
        query: Optional[str] = None,
        filters: FiltersInput = None,
        user_id: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> SearchResponse:
        """Fuzzy search with filters, boost ranking and pagination.

        An empty query browses the filtered catalog with a flat baseline
        relevance. A query that normalizes to a single character matches
        nothing.

        Args:
            query: Free-text query.
            filters: `SearchFilters` or an equivalent dict.
            user_id: Searching user, recorded for analytics and suggestions.
            limit: Page size (0 to max_limit).
            offset: Number of ranked results to skip.

        Returns:
            The requested page, the total match count and request analytics.

        Raises:
            InvalidRequestError: On invalid limit, offset or filters.
            IndexUnavailableError: If the index is missing and cannot be built.
        """
        start_time = time.time()
        validate_count(limit, "limit", self.settings.max_limit)
        validate_count(offset, "offset")
        search_filters = parse_filters(filters)
        normalized = normalize_text(query)

        key = search_cache_key(normalized, search_filters, limit, offset)
        cached = self.cache.get(key)
        cache_hit = cached is not None

        if cache_hit:
            results, total = cached
        elif normalized and len(normalized) < MIN_QUERY_LENGTH:
            results, total = [], 0
        else:
            snapshot = self._current_snapshot()
            ranked = rank_results(
                self._filtered_matches(snapshot, normalized, search_filters),
                normalized,
                search_filters,
            )
            total = len(ranked)
            results = [entry.item for entry, _ in ranked[offset:offset + limit]]
            self._cache_from_snapshot(
                key, (results, total), self.settings.search_results_ttl, snapshot
            )

        response_time_ms = (time.time() - start_time) * 1000
        search_id = str(uuid.uuid4())
        self._record_search(
            SearchQueryRecord(
                search_id=search_id,
                query=normalized,
                filters=search_filters.model_dump(mode="json", exclude_defaults=True),
                result_count=total,
                response_time_ms=response_time_ms,
                created_at=self.clock(),
                user_id=user_id,
                cache_hit=cache_hit,
            )
        )

        return SearchResponse(
            results=results,
            total=total,
            analytics={
                "search_id": search_id,
                "query": normalized,
                "response_time_ms": round(response_time_ms, 2),
                "cache_hit": cache_hit,
            },
        )

    def _filtered_matches(self, snapshot: IndexSnapshot, normalized: str, filters: SearchFilters):
        if normalized:
            matches = snapshot.matcher.match(snapshot.entries, normalized)
        else:
            matches = [(entry, BASELINE_RELEVANCE) for entry in snapshot.entries]
        return apply_filters(matches, filters)

    def get_facets(self, query: Optional[str] = None, filters: FiltersInput = None) -> Dict[str, Any]:
        """Facet counts over the filtered result set for a query."""
        search_filters = parse_filters(filters)
        normalized = normalize_text(query)

        key = facets_cache_key(normalized, search_filters)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        snapshot = None
        if normalized and len(normalized) < MIN_QUERY_LENGTH:
            entries = []
        else:
            snapshot = self._current_snapshot()
            entries = [
                entry for entry, _ in self._filtered_matches(snapshot, normalized, search_filters)
            ]
        facets = calculate_facets(entries)
        facets["total"] = len(entries)
        self._cache_from_snapshot(key, facets, self.settings.search_results_ttl, snapshot)
        return facets

    def get_autocomplete(
        self, query: Optional[str], limit: int = DEFAULT_AUTOCOMPLETE_LIMIT
    ) -> List[Suggestion]:
        """Suggestions for a partial query, best first."""
        validate_count(limit, "limit", self.settings.max_limit)
        fragment = normalize_text(query)
        if len(fragment) < MIN_QUERY_LENGTH or limit == 0:
            return []

        key = autocomplete_cache_key(fragment, limit)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        snapshot = self._current_snapshot()
        suggestions = gather_suggestions(
            snapshot.entries, fragment, self._popular_queries(), limit
        )
        self._cache_from_snapshot(key, suggestions, self.settings.autocomplete_ttl, snapshot)
        return suggestions

    def _popular_queries(self) -> List[str]:
        since = self.clock() - timedelta(days=POPULAR_QUERY_WINDOW_DAYS)
        try:
            records = retry_read(
                lambda: self.store.list_search_queries_since(since),
                "list_search_queries_since",
                log=self.logger,
            )
        except StoreUnavailableError:
            return []
        counts = Counter(r.query for r in records if r.query and r.result_count > 0)
        return [query for query, _ in counts.most_common()]

    def get_search_suggestions(
        self, user_id: Optional[str] = None, limit: int = DEFAULT_SUGGESTIONS_LIMIT
    ) -> List[str]:
        """The user's frequent recent queries, topped up with trending ones."""
        validate_count(limit, "limit", self.settings.max_limit)
        now = self.clock()
        suggestions: List[str] = []

        try:
            if user_id:
                personal = retry_read(
                    lambda: self.store.list_search_queries_since(
                        now - timedelta(days=PERSONAL_QUERY_WINDOW_DAYS), user_id=user_id
                    ),
                    "list_search_queries_since",
                    log=self.logger,
                )
                counts = Counter(r.query for r in personal if r.query)
                suggestions.extend(q for q, _ in counts.most_common(limit))

            if len(suggestions) < limit:
                recent = retry_read(
                    lambda: self.store.list_search_queries_since(
                        now - timedelta(days=TRENDING_QUERY_WINDOW_DAYS)
                    ),
                    "list_search_queries_since",
                    log=self.logger,
                )
                counts = Counter(r.query for r in recent if r.query and r.result_count > 0)
                for query, _ in counts.most_common():
                    if len(suggestions) >= limit:
                        break
                    if query not in suggestions:
                        suggestions.append(query)
        except StoreUnavailableError as e:
            self.logger.warning(
                "Search suggestions unavailable",
                extra={"degraded": True, "user_id": user_id, "error": e.message},
            )

        return suggestions[:limit]

    # Analytics and tracking

    def get_search_analytics(self, days: int = 7) -> Dict[str, Any]:
        """Aggregate search behavior over the last `days` days."""
        key = f"search_analytics:{days}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        since = self.clock() - timedelta(days=days)
        records = retry_read(
            lambda: self.store.list_search_queries_since(since),
            "list_search_queries_since",
            log=self.logger,
        )

        total = len(records)
        by_query: Dict[str, List[SearchQueryRecord]] = defaultdict(list)
        for record in records:
            by_query[record.query].append(record)

        top_queries = sorted(
            (
                {
                    "query": query,
                    "count": len(rows),
                    "avg_click_through_rate": sum(r.click_through_rate for r in rows) / len(rows),
                }
                for query, rows in by_query.items()
                if query
            ),
            key=lambda row: row["count"],
            reverse=True,
        )[:TOP_QUERIES_LIMIT]

        zero_results = Counter(r.query for r in records if r.result_count == 0 and r.query)
        filter_counts = Counter(kind for r in records for kind in r.filters if kind != "sort_by")

        analytics = {
            "days": days,
            "total_searches": total,
            "avg_response_time_ms": (
                sum(r.response_time_ms for r in records) / total if total else 0.0
            ),
            "cache_hit_rate": sum(1 for r in records if r.cache_hit) / total if total else 0.0,
            "top_queries": top_queries,
            "zero_result_queries": [
                {"query": q, "count": c} for q, c in zero_results.most_common(TOP_QUERIES_LIMIT)
            ],
            "popular_filters": [{"filter": f, "count": c} for f, c in filter_counts.most_common()],
            "conversion_rate": (
                sum(1 for r in records if r.click_through_rate > 0) / total if total else 0.0
            ),
        }
        self.cache.set(key, analytics, self.settings.analytics_ttl)
        return analytics

    def track_search_click(self, search_id: str, item_id: str, position: int) -> None:
        """Record a result click. Never raises."""
        try:
            self.store.increment_search_ctr(search_id, CTR_INCREMENT)
            self.store.insert_analytics_event(
                AnalyticsEvent(
                    event="search_click",
                    data={"search_id": search_id, "item_id": item_id, "position": position},
                    timestamp=self.clock(),
                )
            )
        except StoreUnavailableError as e:
            self.logger.warning(
                "Failed to track search click",
                extra={"degraded": True, "search_id": search_id, "error": e.message},
            )

    def track_search_purchase(self, search_id: str, item_id: str) -> None:
        """Record a purchase that followed a search. Never raises."""
        try:
            self.store.insert_analytics_event(
                AnalyticsEvent(
                    event="search_purchase",
                    data={"search_id": search_id, "item_id": item_id},
                    timestamp=self.clock(),
                )
            )
        except StoreUnavailableError as e:
            self.logger.warning(
                "Failed to track search purchase",
                extra={"degraded": True, "search_id": search_id, "error": e.message},
            )

    def _record_search(self, record: SearchQueryRecord) -> None:
        try:
            self.store.insert_search_query(record)
            self.store.insert_analytics_event(
                AnalyticsEvent(
                    event="search",
                    data={
                        "search_id": record.search_id,
                        "query": record.query,
                        "result_count": record.result_count,
                        "response_time_ms": record.response_time_ms,
                        "cache_hit": record.cache_hit,
                    },
                    timestamp=record.created_at,
                    user_id=record.user_id,
                )
            )
        except StoreUnavailableError as e:
            self.logger.warning(
                "Failed to record search",
                extra={"degraded": True, "search_id": record.search_id, "error": e.message},
            )

    # Maintenance

    def cleanup_old_search_data(self, days_to_keep: int = 30) -> int:
        cutoff = self.clock() - timedelta(days=days_to_keep)
        deleted = self.store.delete_search_queries_before(cutoff)
        self.logger.info(f"Cleaned up {deleted} old search records")
        return deleted

    def health_check(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        details: Dict[str, Any] = {
            "index_size": len(snapshot) if snapshot is not None else 0,
            "index_built_at": snapshot.built_at.isoformat() if snapshot is not None else None,
        }
        try:
            self.store.ping()
            details["database"] = "connected"
        except MatchaRankError as e:
            details["database"] = f"unavailable: {e.message}"
        try:
            self.cache.ping()
            details["cache"] = "connected"
        except MatchaRankError as e:
            details["cache"] = f"unavailable: {e.message}"

        if details["database"] != "connected":
            status = "unhealthy"
        elif snapshot is None or details["cache"] != "connected":
            status = "degraded"
        else:
            status = "healthy"
        return {"status": status, "details": details}
