"""Similarity engines.

User-user similarity is the Jaccard overlap of interacted item sets,
computed against every user sharing enough items with the target. Item-item
similarity averages four attribute factors (grade, flavor, price, origin).
The same four factors score an item against a user profile for
content-based recommendations.
"""

import logging
from typing import AbstractSet, List, Optional, Tuple

import numpy as np

from matcharank.recommender.cache import Cache
from matcharank.recommender.interactions import InteractionReader
from matcharank.recommender.models import CatalogItem, SimilarityEdge, UserProfile
from matcharank.recommender.store import DataStore
from matcharank.utils import retry_read

# Configure module logger
logger = logging.getLogger(__name__)

GRADE_WEIGHT = 0.3
FLAVOR_WEIGHT = 0.4
PRICE_WEIGHT = 0.2
ORIGIN_WEIGHT = 0.1
FACTOR_COUNT = 4
PRICE_TOLERANCE = 0.2

DEFAULT_TOP_K_USERS = 20
MAX_SHARED_ITEMS_REQUIRED = 2
DEFAULT_SIMILARITY_TTL = 3600


def jaccard(a: AbstractSet, b: AbstractSet) -> float:
    """|a & b| / |a | b|, 0.0 when both sets are empty."""
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def price_proximity(price_a: float, price_b: float) -> float:
    """1.0 for equal prices, falling linearly to 0.0 at a 20% difference.

    The difference is measured relative to the larger of the two prices.
    """
    larger = max(price_a, price_b)
    if larger <= 0:
        return 1.0
    relative_diff = abs(price_a - price_b) / larger
    return max(0.0, 1.0 - relative_diff / PRICE_TOLERANCE)


def item_similarity_factors(a: CatalogItem, b: CatalogItem) -> Tuple[float, float, float, float]:
    """Weighted contributions of grade, flavor, price and origin."""
    grade = GRADE_WEIGHT if a.grade == b.grade else 0.0
    flavor = FLAVOR_WEIGHT * jaccard(a.flavor_set, b.flavor_set)
    price = PRICE_WEIGHT * price_proximity(a.price, b.price)
    origin = ORIGIN_WEIGHT if a.origin.lower() == b.origin.lower() else 0.0
    return grade, flavor, price, origin


def item_similarity(a: CatalogItem, b: CatalogItem) -> float:
    """Symmetric attribute similarity between two catalog items.

    The weighted factor sum is divided by the number of factors, not by the
    total weight, so the maximum attainable value is 0.25.
    """
    return sum(item_similarity_factors(a, b)) / FACTOR_COUNT


def profile_item_score(profile: UserProfile, item: CatalogItem) -> Tuple[float, List[str]]:
    """Score an item against a user profile with the four-factor structure.

    Returns:
        Tuple of (score, explanations) where explanations describe each
        factor that fired.
    """
    explanations: List[str] = []
    total = 0.0

    if item.grade in profile.preferred_grades:
        total += GRADE_WEIGHT
        explanations.append(f"Matches your preference for {item.grade.value} grade")

    shared_flavors = item.flavor_set & set(profile.flavor_preferences)
    if shared_flavors:
        total += FLAVOR_WEIGHT * jaccard(item.flavor_set, set(profile.flavor_preferences))
        names = ", ".join(sorted(f.value for f in shared_flavors))
        explanations.append(f"Has {names} flavors you enjoy")

    low, high = profile.price_range
    if low <= item.price <= high:
        total += PRICE_WEIGHT
        explanations.append("Fits your price range")

    preferred_origins = {o.lower() for o in profile.preferred_origins}
    if item.origin.lower() in preferred_origins:
        total += ORIGIN_WEIGHT
        explanations.append(f"From {item.origin}, an origin you have explored")

    return total / FACTOR_COUNT, explanations


def user_similarity_cache_key(user_id: str) -> str:
    return f"user_similarity:{user_id}"


def similar_items_cache_key(item_id: str, limit: int) -> str:
    return f"similar_items:{item_id}:{limit}"


class UserSimilarityEngine:
    """Finds users whose interacted item sets overlap the target's."""

    def __init__(
        self,
        reader: InteractionReader,
        cache: Cache,
        ttl_seconds: int = DEFAULT_SIMILARITY_TTL,
        top_k: int = DEFAULT_TOP_K_USERS,
        log: Optional[logging.Logger] = None,
    ):
        self.reader = reader
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.top_k = top_k
        self.logger = log or logger

    def similar_users(self, user_id: str) -> List[SimilarityEdge]:
        """Top-K similar users by Jaccard similarity, cached."""
        key = user_similarity_cache_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        edges = self.compute_similar_users(user_id)
        self.cache.set(key, edges, self.ttl_seconds)
        return edges

    def compute_similar_users(self, user_id: str) -> List[SimilarityEdge]:
        """Compute similar users without consulting the cache.

        Candidates are users sharing at least min(2, |items(user)|) items with
        the target, found through the item columns of the user-item matrix.
        """
        uim = self.reader.build_user_item_matrix()
        if user_id not in uim.user_id_to_idx:
            return []

        matrix = uim.matrix
        target_idx = uim.user_id_to_idx[user_id]
        target_row = matrix[target_idx]
        target_size = target_row.nnz
        if target_size == 0:
            return []

        shared_counts = np.asarray((matrix @ target_row.T).todense()).ravel()
        set_sizes = np.asarray(matrix.sum(axis=1)).ravel()

        min_shared = min(MAX_SHARED_ITEMS_REQUIRED, target_size)
        mask = shared_counts >= min_shared
        mask[target_idx] = False
        candidates = np.nonzero(mask)[0]
        if len(candidates) == 0:
            return []

        shared = shared_counts[candidates]
        union = set_sizes[candidates] + target_size - shared
        similarities = shared / union

        order = np.argsort(-similarities, kind="stable")[: self.top_k]
        idx_to_user_id = uim.idx_to_user_id
        idx_to_item_id = {idx: iid for iid, idx in uim.item_id_to_idx.items()}
        target_items = set(target_row.indices.tolist())

        edges = []
        for pos in order:
            candidate_idx = int(candidates[pos])
            common = target_items & set(matrix[candidate_idx].indices.tolist())
            edges.append(
                SimilarityEdge(
                    source_id=user_id,
                    target_id=idx_to_user_id[candidate_idx],
                    similarity=float(similarities[pos]),
                    evidence=tuple(sorted(idx_to_item_id[i] for i in common)),
                )
            )

        self.logger.debug(
            "Computed similar users",
            extra={"user_id": user_id, "candidates": len(candidates), "returned": len(edges)},
        )
        return edges

    def invalidate(self, user_id: str) -> None:
        self.cache.delete(user_similarity_cache_key(user_id))


class ItemSimilarityEngine:
    """Ranks in-stock catalog items by attribute similarity to one item."""

    def __init__(
        self,
        store: DataStore,
        cache: Cache,
        ttl_seconds: int = DEFAULT_SIMILARITY_TTL,
        log: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.logger = log or logger

    def similar_item_edges(self, item_id: str, limit: int) -> List[SimilarityEdge]:
        key = similar_items_cache_key(item_id, limit)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        source = retry_read(lambda: self.store.get_item(item_id), "get_item", log=self.logger)
        if source is None:
            self.logger.info(f"Item {item_id} not found, no similar items")
            return []

        candidates = retry_read(
            lambda: self.store.list_items(in_stock_only=True), "list_items", log=self.logger
        )
        edges = []
        for candidate in candidates:
            if candidate.item_id == item_id:
                continue
            factors = item_similarity_factors(source, candidate)
            evidence = tuple(
                name for name, value in zip(("grade", "flavor", "price", "origin"), factors)
                if value > 0
            )
            edges.append(
                SimilarityEdge(
                    source_id=item_id,
                    target_id=candidate.item_id,
                    similarity=sum(factors) / FACTOR_COUNT,
                    evidence=evidence,
                )
            )

        edges.sort(key=lambda e: e.similarity, reverse=True)
        edges = edges[:limit]
        self.cache.set(key, edges, self.ttl_seconds)
        return edges

    def similar_items(self, item_id: str, limit: int) -> List[CatalogItem]:
        """Most similar in-stock items, best first; vanished items are dropped."""
        edges = self.similar_item_edges(item_id, limit)
        items = {
            item.item_id: item
            for item in retry_read(
                lambda: self.store.get_items_by_ids([e.target_id for e in edges]),
                "get_items_by_ids",
                log=self.logger,
            )
        }
        return [items[e.target_id] for e in edges if e.target_id in items]
