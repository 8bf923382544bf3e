"""Facet counts over a filtered result set, and autocomplete suggestions."""

import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from matcharank.recommender.models import Flavor, Grade
from matcharank.search.index import SearchIndexEntry
from matcharank.utils import normalize_text

# (label, lower bound inclusive, upper bound exclusive)
PRICE_BANDS: Tuple[Tuple[str, float, float], ...] = (
    ("Under $20", 0.0, 20.0),
    ("$20-$40", 20.0, 40.0),
    ("$40-$60", 40.0, 60.0),
    ("$60-$100", 60.0, 100.0),
    ("Over $100", 100.0, float("inf")),
)
IN_STOCK_LABEL = "In Stock"
OUT_OF_STOCK_LABEL = "Out of Stock"

EXACT_SUGGESTION_SCORE = 1.0
PREFIX_SUGGESTION_SCORE = 0.8
SUBSTRING_SUGGESTION_SCORE = 0.6
POPULARITY_SUGGESTION_WEIGHT = 0.2

MAX_PRODUCT_SUGGESTIONS = 5
MAX_QUERY_SUGGESTIONS = 3
BRAND_SIGNAL_PER_ITEM = 0.1
ORIGIN_SIGNAL_PER_ITEM = 0.1
FLAVOR_SIGNAL_PER_ITEM = 0.05
GRADE_SIGNAL_PER_ITEM = 0.1
QUERY_SIGNAL = 0.3


def _count_facet(values: Iterable[str]) -> List[Dict]:
    counts = Counter(values)
    # most_common keeps first-seen order among ties
    return [{"value": value, "count": count} for value, count in counts.most_common() if count > 0]


def calculate_facets(entries: Sequence[SearchIndexEntry]) -> Dict[str, List[Dict]]:
    """Grouped counts for a filtered, not yet ranked, result set.

    Single-valued facets (provider, grade, origin, price band, availability)
    sum to ``len(entries)``. An item can carry several flavors, so each
    flavor count is at most ``len(entries)``.
    """
    items = [entry.item for entry in entries]

    price_ranges = []
    for label, low, high in PRICE_BANDS:
        count = sum(1 for item in items if low <= item.price < high)
        if count:
            price_ranges.append(
                {"label": label, "min": low, "max": None if high == float("inf") else high, "count": count}
            )
    price_ranges.sort(key=lambda band: band["count"], reverse=True)

    return {
        "providers": _count_facet(item.provider for item in items),
        "grades": _count_facet(item.grade.value for item in items),
        "origins": _count_facet(item.origin for item in items),
        "flavors": _count_facet(f.value for item in items for f in item.flavor_set),
        "price_ranges": price_ranges,
        "availability": _count_facet(
            IN_STOCK_LABEL if item.in_stock else OUT_OF_STOCK_LABEL for item in items
        ),
    }


class SuggestionType(str, Enum):
    PRODUCT = "product"
    BRAND = "brand"
    ORIGIN = "origin"
    FLAVOR = "flavor"
    GRADE = "grade"
    QUERY = "query"


@dataclass(frozen=True)
class Suggestion:
    text: str
    type: SuggestionType
    score: float
    highlight: str


def suggestion_score(text: str, fragment: str, popularity_signal: float) -> float:
    """Match strength plus a capped popularity bonus."""
    lowered = normalize_text(text)
    if lowered == fragment:
        match_score = EXACT_SUGGESTION_SCORE
    elif lowered.startswith(fragment):
        match_score = PREFIX_SUGGESTION_SCORE
    elif fragment in lowered:
        match_score = SUBSTRING_SUGGESTION_SCORE
    else:
        match_score = 0.0
    return match_score + POPULARITY_SUGGESTION_WEIGHT * min(popularity_signal, 1.0)


def highlight_match(text: str, fragment: str) -> str:
    """Wrap every case-insensitive occurrence of `fragment` in <mark> tags.

    Words of a normalized fragment also match across punctuation, so
    "uji matcha" highlights "Uji-Matcha".
    """
    if not fragment:
        return text
    pattern = r"\W+".join(re.escape(word) for word in fragment.split())
    return re.sub(pattern, lambda m: f"<mark>{m.group(0)}</mark>", text, flags=re.IGNORECASE)


def _suggest(text: str, kind: SuggestionType, fragment: str, signal: float) -> Suggestion:
    return Suggestion(
        text=text,
        type=kind,
        score=suggestion_score(text, fragment, signal),
        highlight=highlight_match(text, fragment),
    )


def gather_suggestions(
    entries: Sequence[SearchIndexEntry],
    fragment: str,
    popular_queries: Sequence[str],
    limit: int,
) -> List[Suggestion]:
    """Autocomplete candidates from the catalog and past queries.

    Args:
        entries: Current index entries.
        fragment: Normalized partial query.
        popular_queries: Past full queries, most frequent first.
        limit: Maximum number of suggestions.

    Returns:
        Suggestions deduplicated by (text, type), best first.
    """
    candidates: List[Suggestion] = []

    named = [e for e in entries if fragment in normalize_text(e.item.name)]
    for entry in named[:MAX_PRODUCT_SUGGESTIONS]:
        candidates.append(_suggest(entry.item.name, SuggestionType.PRODUCT, fragment, entry.popularity))

    provider_counts = Counter(e.item.provider for e in entries if e.item.provider)
    for provider, count in provider_counts.items():
        if fragment in normalize_text(provider):
            candidates.append(
                _suggest(provider, SuggestionType.BRAND, fragment, count * BRAND_SIGNAL_PER_ITEM)
            )

    origin_counts = Counter(e.item.origin for e in entries if e.item.origin)
    for origin, count in origin_counts.items():
        if fragment in normalize_text(origin):
            candidates.append(
                _suggest(origin, SuggestionType.ORIGIN, fragment, count * ORIGIN_SIGNAL_PER_ITEM)
            )

    flavor_counts = Counter(f for e in entries for f in e.item.flavor_set)
    for flavor in Flavor:
        if fragment in flavor.value:
            candidates.append(
                _suggest(
                    flavor.value,
                    SuggestionType.FLAVOR,
                    fragment,
                    flavor_counts[flavor] * FLAVOR_SIGNAL_PER_ITEM,
                )
            )

    grade_counts = Counter(e.item.grade for e in entries)
    for grade in Grade:
        if fragment in grade.value:
            candidates.append(
                _suggest(grade.value, SuggestionType.GRADE, fragment, grade_counts[grade] * GRADE_SIGNAL_PER_ITEM)
            )

    matching_queries = [q for q in popular_queries if fragment in normalize_text(q)]
    for query in matching_queries[:MAX_QUERY_SUGGESTIONS]:
        candidates.append(_suggest(query, SuggestionType.QUERY, fragment, QUERY_SIGNAL))

    best: Dict[Tuple[str, SuggestionType], Suggestion] = {}
    for suggestion in candidates:
        key = (suggestion.text.lower(), suggestion.type)
        if key not in best or suggestion.score > best[key].score:
            best[key] = suggestion

    return sorted(best.values(), key=lambda s: s.score, reverse=True)[:limit]
