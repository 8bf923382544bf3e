"""Search filters and the boost-based ranking formula."""

import hashlib
import json
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from matcharank.recommender.models import Flavor, Grade
from matcharank.search.index import SearchIndexEntry

BASELINE_RELEVANCE = 0.5

EXACT_NAME_BOOST = 2.0
NAME_MATCH_BOOST = 1.8
DESCRIPTION_MATCH_BOOST = 1.2
PROVIDER_MATCH_BOOST = 1.5
IN_STOCK_BOOST = 1.3
POPULARITY_BOOST = 1.1
PRICE_RANGE_BOOST = 1.1


class SortBy(str, Enum):
    RELEVANCE = "relevance"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    RATING = "rating"
    NEWEST = "newest"


class PriceRange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min: float = Field(default=0.0, ge=0)
    max: float = Field(default=float("inf"), ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "PriceRange":
        if self.min > self.max:
            raise ValueError("price range min must not exceed max")
        return self

    def contains(self, price: float) -> bool:
        return self.min <= price <= self.max


class SearchFilters(BaseModel):
    """Optional narrowing of a search. Every list filter matches on any member."""

    model_config = ConfigDict(extra="forbid")

    providers: List[str] = Field(default_factory=list)
    price_range: Optional[PriceRange] = None
    grades: List[Grade] = Field(default_factory=list)
    in_stock_only: bool = False
    origins: List[str] = Field(default_factory=list)
    flavor_profiles: List[Flavor] = Field(default_factory=list)
    sort_by: SortBy = SortBy.RELEVANCE

    def fingerprint(self) -> str:
        """Stable digest of the filters for cache keys."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.md5(payload.encode("utf-8")).hexdigest()


def matches_filters(entry: SearchIndexEntry, filters: SearchFilters) -> bool:
    item = entry.item
    if filters.providers and item.provider not in filters.providers:
        return False
    if filters.price_range is not None and not filters.price_range.contains(item.price):
        return False
    if filters.grades and item.grade not in filters.grades:
        return False
    if filters.in_stock_only and not item.in_stock:
        return False
    if filters.origins:
        origin = item.origin.lower()
        if not any(o.lower() in origin for o in filters.origins):
            return False
    if filters.flavor_profiles and not item.flavor_set.intersection(filters.flavor_profiles):
        return False
    return True


def apply_filters(
    matches: Iterable[Tuple[SearchIndexEntry, float]], filters: SearchFilters
) -> List[Tuple[SearchIndexEntry, float]]:
    return [(entry, score) for entry, score in matches if matches_filters(entry, filters)]


def boosted_score(
    entry: SearchIndexEntry,
    relevance: float,
    query: str,
    filters: SearchFilters,
) -> float:
    """Apply every boost factor multiplicatively to a relevance score.

    Args:
        entry: Indexed item being ranked.
        relevance: Fuzzy relevance, or the 0.5 baseline when browsing.
        query: Normalized query; text boosts are skipped when it is empty.
        filters: Active filters; a requested price range earns a boost.

    Returns:
        The composite ranking score.
    """
    score = relevance
    if query:
        name = entry.field_texts["name"]
        if name == query:
            score *= EXACT_NAME_BOOST
        if query in name:
            score *= NAME_MATCH_BOOST
        if query in entry.field_texts["description"]:
            score *= DESCRIPTION_MATCH_BOOST
        if query in entry.field_texts["provider"]:
            score *= PROVIDER_MATCH_BOOST
    if entry.item.in_stock:
        score *= IN_STOCK_BOOST
    score *= 1 + entry.popularity * POPULARITY_BOOST
    if filters.price_range is not None and filters.price_range.contains(entry.item.price):
        score *= PRICE_RANGE_BOOST
    return score


def rank_results(
    matches: Iterable[Tuple[SearchIndexEntry, float]],
    query: str,
    filters: SearchFilters,
) -> List[Tuple[SearchIndexEntry, float]]:
    """Score matches, sort by composite score, then apply the sort mode."""
    ranked = sorted(
        ((entry, boosted_score(entry, relevance, query, filters)) for entry, relevance in matches),
        key=lambda pair: pair[1],
        reverse=True,
    )

    if filters.sort_by == SortBy.PRICE_LOW:
        ranked.sort(key=lambda pair: pair[0].item.price)
    elif filters.sort_by == SortBy.PRICE_HIGH:
        ranked.sort(key=lambda pair: pair[0].item.price, reverse=True)
    elif filters.sort_by == SortBy.RATING:
        ranked.sort(key=lambda pair: pair[0].popularity, reverse=True)
    elif filters.sort_by == SortBy.NEWEST:
        ranked.sort(
            key=lambda pair: pair[0].item.created_at.timestamp() if pair[0].item.created_at else 0.0,
            reverse=True,
        )
    return ranked
