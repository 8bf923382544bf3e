"""Tests for the search index, ranking and search service."""

from datetime import timedelta

import pytest

from conftest import NOW, make_item
from matcharank.exceptions import InvalidRequestError
from matcharank.recommender.cache import InMemoryCache
from matcharank.recommender.store import InMemoryStore
from matcharank.search.facets import SuggestionType
from matcharank.search.index import build_snapshot, load_snapshot, save_snapshot
from matcharank.search.ranker import SearchFilters, SortBy
from matcharank.search.service import SearchService, search_cache_key


def _service(items, test_settings, clock=lambda: NOW):
    store = InMemoryStore(items=items)
    return SearchService(store, InMemoryCache(), settings=test_settings, clock=clock)


def _ids(response):
    return [item.item_id for item in response.results]


def test_ceremonial_uji_ranks_full_match_first(test_settings):
    """Test a two-token query against one full match, one partial and one miss."""
    service = _service(
        [
            make_item("s1", "Ceremonial Uji Matcha", "ceremonial", "Uji, Kyoto", 40.0),
            make_item("s2", "Ceremonial Blend", "ceremonial", "Kagoshima", 30.0),
            make_item("s3", "Culinary Baking Powder", "culinary", "Shizuoka", 15.0),
        ],
        test_settings,
    )

    response = service.search("ceremonial uji")

    assert _ids(response) == ["s1", "s2"]
    assert response.total == 2


def test_exact_name_outranks_partial_name(test_settings):
    """Test that an exact name match beats an otherwise identical item."""
    service = _service(
        [
            make_item("r1", "Wako Reserve", "ceremonial", "Uji, Kyoto", 40.0),
            make_item("r2", "Wako", "ceremonial", "Uji, Kyoto", 40.0),
        ],
        test_settings,
    )

    assert _ids(service.search("wako")) == ["r2", "r1"]


def test_typo_tolerance(search_service):
    """Test that a misspelled token still finds the intended items."""
    response = search_service.search("ceremonal")
    assert "m01" in _ids(response)


def test_empty_query_browses_catalog(search_service):
    response = search_service.search(None)

    assert response.total == 14
    # Most popular in-stock item ranks first at the baseline relevance
    assert _ids(response)[0] == "m01"


def test_single_character_query_matches_nothing(search_service):
    response = search_service.search("a")
    assert response.results == []
    assert response.total == 0


def test_filters_narrow_results(search_service):
    response = search_service.search(
        None, filters={"grades": ["ceremonial"], "in_stock_only": True}
    )
    assert sorted(_ids(response)) == ["m01", "m02", "m03", "m07", "m10"]

    response = search_service.search(None, filters={"origins": ["uji"]})
    assert sorted(_ids(response)) == ["m01", "m02", "m06", "m07", "m12"]


def test_price_range_filter_with_price_sort(search_service):
    filters = SearchFilters.model_validate(
        {"price_range": {"min": 20, "max": 40}, "sort_by": "price_low"}
    )

    response = search_service.search(None, filters=filters)

    assert _ids(response) == ["m06", "m14", "m08", "m05", "m03", "m02"]
    assert filters.sort_by == SortBy.PRICE_LOW


@pytest.mark.parametrize(
    "filters",
    [
        {"grades": ["bogus"]},
        {"unknown_filter": True},
        {"price_range": {"min": 50, "max": 10}},
        {"sort_by": "cheapest"},
    ],
)
def test_invalid_filters_are_rejected(search_service, filters):
    with pytest.raises(InvalidRequestError):
        search_service.search("matcha", filters=filters)


def test_invalid_paging_is_rejected(search_service):
    with pytest.raises(InvalidRequestError):
        search_service.search("matcha", limit=-1)
    with pytest.raises(InvalidRequestError):
        search_service.search("matcha", offset=-5)


def test_pagination_is_consistent(search_service):
    full = _ids(search_service.search(None, limit=14))
    first = search_service.search(None, limit=7, offset=0)
    second = search_service.search(None, limit=7, offset=7)

    assert _ids(first) + _ids(second) == full
    assert first.total == second.total == 14
    assert _ids(search_service.search(None, limit=5, offset=12)) == full[12:]


def test_repeated_search_is_cached(search_service):
    first = search_service.search("matcha")
    second = search_service.search("matcha")

    assert first.analytics["cache_hit"] is False
    assert second.analytics["cache_hit"] is True
    assert _ids(first) == _ids(second)


def test_rebuild_during_search_is_not_cached(search_service, store):
    """Test that a search straddling a rebuild serves the old snapshot uncached."""
    search_service.rebuild_index()
    snapshot = search_service.snapshot
    real_match = snapshot.matcher.match

    def match_then_rebuild(entries, query):
        matches = real_match(entries, query)
        store.upsert_item(
            make_item("m99", "Sakura Ceremonial Matcha", "ceremonial", "Uji, Kyoto", 44.0)
        )
        search_service.rebuild_index()
        return matches

    snapshot.matcher.match = match_then_rebuild

    stale = search_service.search("ceremonial")
    assert "m99" not in _ids(stale)
    assert search_service.cache.get(search_cache_key("ceremonial", SearchFilters(), 20, 0)) is None

    fresh = search_service.search("ceremonial")
    assert search_service.snapshot is not snapshot
    assert "m99" in _ids(fresh)


def test_rebuild_clears_search_caches(search_service):
    search_service.search("matcha")
    search_service.get_autocomplete("mat")

    search_service.rebuild_index()

    assert search_service.search("matcha").analytics["cache_hit"] is False


def test_facets_sum_to_result_count(search_service):
    facets = search_service.get_facets()

    assert facets["total"] == 14
    for name in ("providers", "grades", "origins", "price_ranges", "availability"):
        assert sum(row["count"] for row in facets[name]) == 14
    assert all(row["count"] <= 14 for row in facets["flavors"])
    assert {"value": "Out of Stock", "count": 1} in facets["availability"]
    counts = [row["count"] for row in facets["grades"]]
    assert counts == sorted(counts, reverse=True)


def test_facets_follow_filters(search_service):
    facets = search_service.get_facets(None, filters={"grades": ["premium"]})

    assert facets["total"] == 4
    assert facets["grades"] == [{"value": "premium", "count": 4}]


def test_click_tracking_and_analytics(search_service, store):
    response = search_service.search("matcha", user_id="alice")
    search_service.search("zzzz", user_id="alice")

    search_service.track_search_click(response.analytics["search_id"], "m01", 0)

    records = {r.query: r for r in store.list_search_queries_since(NOW - timedelta(days=1))}
    assert records["matcha"].click_through_rate == pytest.approx(0.1)
    assert store.analytics_events[-1].event == "search_click"

    analytics = search_service.get_search_analytics(days=7)
    assert analytics["total_searches"] == 2
    assert analytics["conversion_rate"] == pytest.approx(0.5)
    assert {"query": "zzzz", "count": 1} in analytics["zero_result_queries"]
    assert {row["query"] for row in analytics["top_queries"]} == {"matcha", "zzzz"}


def test_tracking_unknown_search_never_raises(search_service):
    search_service.track_search_click("missing", "m01", 3)
    search_service.track_search_purchase("missing", "m01")


def test_search_suggestions_prefer_personal_history(search_service):
    search_service.search("uji", user_id="alice")
    search_service.search("matcha", user_id="alice")
    search_service.search("matcha", user_id="alice", limit=5)
    search_service.search("nishio", user_id="bob")

    assert search_service.get_search_suggestions("alice", limit=2) == ["matcha", "uji"]
    assert "nishio" in search_service.get_search_suggestions("alice", limit=5)


def test_cleanup_old_search_data(search_service, store, test_settings):
    search_service.search("matcha")
    later = SearchService(
        store, InMemoryCache(), settings=test_settings, clock=lambda: NOW + timedelta(days=31)
    )
    assert later.cleanup_old_search_data(days_to_keep=30) == 1


def test_health_reflects_index_state(search_service):
    assert search_service.health_check()["status"] == "degraded"
    search_service.rebuild_index()
    health = search_service.health_check()
    assert health["status"] == "healthy"
    assert health["details"]["index_size"] == 14


def test_snapshot_round_trip(catalog, tmp_path):
    snapshot = build_snapshot(catalog)
    path = tmp_path / "index" / "snapshot.joblib"

    save_snapshot(snapshot, str(path))
    loaded = load_snapshot(str(path))

    assert len(loaded) == 14
    matches = loaded.matcher.match(loaded.entries, "wako")
    assert "m02" in {entry.item_id for entry, _ in matches}


def test_stale_or_missing_snapshot_is_ignored(catalog, tmp_path):
    snapshot = build_snapshot(catalog)
    path = tmp_path / "snapshot.joblib"
    save_snapshot(snapshot, str(path))

    later = snapshot.built_at + timedelta(seconds=120)
    assert load_snapshot(str(path), max_age_seconds=60, now=later) is None
    assert load_snapshot(str(tmp_path / "missing.joblib")) is None


def test_service_warm_starts_from_snapshot(catalog, tmp_path, test_settings):
    path = tmp_path / "snapshot.joblib"
    save_snapshot(build_snapshot(catalog), str(path))
    settings = test_settings.model_copy(update={"index_snapshot_path": str(path)})

    service = SearchService(InMemoryStore(), InMemoryCache(), settings=settings)

    assert service.snapshot is not None
    assert len(service.snapshot) == 14


def test_generated_tags_are_searchable(search_service):
    """Test that price-tier tags match even though no text field contains them."""
    response = search_service.search("budget")
    assert sorted(_ids(response)) == ["m04", "m11"]


def test_autocomplete_agrees_with_search_on_punctuated_names(test_settings):
    """Test that a name typed with its hyphen is both found and suggested."""
    service = _service(
        [
            make_item("a", "Uji-Matcha Ceremonial", "ceremonial", "Uji, Kyoto", 40.0),
            make_item("b", "Uji-Matcha Daily", "premium", "Uji, Kyoto", 25.0,
                      provider="Marukyu's"),
        ],
        test_settings,
    )

    assert set(_ids(service.search("Uji-Matcha"))) == {"a", "b"}
    suggestions = service.get_autocomplete("uji-matcha")
    names = {s.text for s in suggestions if s.type == SuggestionType.PRODUCT}
    assert names == {"Uji-Matcha Ceremonial", "Uji-Matcha Daily"}
    assert [s.text for s in service.get_autocomplete("marukyu's")] == ["Marukyu's"]


class RebuildOnWriteCache(InMemoryCache):
    """Cache whose first search write races with an index rebuild."""

    def __init__(self):
        super().__init__()
        self.service = None
        self.raced = False

    def set(self, key, value, ttl_seconds):
        if key.startswith("search:") and not self.raced:
            self.raced = True
            self.service.rebuild_index()
        super().set(key, value, ttl_seconds)


def test_rebuild_racing_the_cache_write_leaves_nothing_cached(catalog, test_settings):
    """Test a rebuild landing between the snapshot check and the write."""
    cache = RebuildOnWriteCache()
    service = SearchService(
        InMemoryStore(items=catalog), cache, settings=test_settings, clock=lambda: NOW
    )
    cache.service = service
    service.rebuild_index()

    service.search("ceremonial")

    assert cache.raced
    assert cache.get(search_cache_key("ceremonial", SearchFilters(), 20, 0)) is None
