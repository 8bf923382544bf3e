"""Recommendation generator.

Orchestrates one recommendation request: experiment variant lookup, cold
start detection, collaborative and content-based candidate gathering, hybrid
blending, diversity filtering, freshness injection, final ranking and
persistence. Also exposes similar-item lookup, outcome tracking, batch
generation, analytics and cache maintenance.
"""

import logging
import time
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from matcharank.config import Settings, settings as default_settings
from matcharank.exceptions import (
    MatchaRankError,
    RecommendationNotFoundError,
    StoreUnavailableError,
)
from matcharank.metrics import MetricsService
from matcharank.recommender.cache import Cache, TolerantCache
from matcharank.recommender.experiments import ExperimentAssigner
from matcharank.recommender.interactions import InteractionReader
from matcharank.recommender.models import (
    MAX_ACTION_WEIGHT,
    AlgorithmKind,
    CatalogItem,
    Recommendation,
    RecommendationReason,
    ReasonKind,
    SimilarityEdge,
    UserProfile,
    Variant,
)
from matcharank.recommender.profile import ProfileBuilder
from matcharank.recommender.similarity import (
    ItemSimilarityEngine,
    UserSimilarityEngine,
    profile_item_score,
)
from matcharank.recommender.store import DataStore
from matcharank.utils import chunked, retry_read, utc_now, validate_count

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_SIMILAR_ITEMS_LIMIT = 5

CONTENT_SCORE_FLOOR = 0.1

TRENDING_WINDOW_DAYS = 7
TRENDING_TOP_SCORE = 0.9
TRENDING_DECAY = 0.1
# Scores stay positive for at most this many trending positions
TRENDING_MAX_ITEMS = 9

GRADE_CAP = 3
ORIGIN_CAP = 2
DIVERSITY_MIN_POOL = 10

FRESHNESS_WINDOW_DAYS = 30
FRESHNESS_MAX_ITEMS = 5
FRESHNESS_SCORE = 0.6

COLLABORATIVE_EXPLANATION = "Liked by similar users"
TRENDING_EXPLANATION = "Trending this week"
FRESHNESS_EXPLANATION = "Newly added"

RECOMMENDATION_CACHE_PREFIXES = (
    "recommendations:",
    "user_profile:",
    "user_similarity:",
    "similar_items:",
)


def recommendations_cache_key(user_id: str, limit: int) -> str:
    return f"recommendations:{user_id}:{limit}"


@dataclass
class Candidate:
    """An item under consideration, with the score and reasons so far."""

    item: CatalogItem
    score: float
    reason_kind: ReasonKind
    explanations: List[str] = field(default_factory=list)

    @property
    def item_id(self) -> str:
        return self.item.item_id


def blend_candidates(
    collaborative: Dict[str, Candidate],
    content: Dict[str, Candidate],
    algorithm: AlgorithmKind,
    collaborative_weight: float,
) -> Dict[str, Candidate]:
    """Combine the two candidate lists according to the strategy.

    For hybrid strategies an item found by both gatherers scores
    ``collab * w + content * (1 - w)``; an item found by only one keeps that
    list's score scaled by its share.
    """
    if algorithm == AlgorithmKind.COLLABORATIVE:
        return dict(collaborative)
    if algorithm == AlgorithmKind.CONTENT_BASED:
        return dict(content)

    w = collaborative_weight
    blended: Dict[str, Candidate] = {}
    for item_id in list(collaborative) + [i for i in content if i not in collaborative]:
        collab = collaborative.get(item_id)
        cont = content.get(item_id)
        if collab is not None and cont is not None:
            blended[item_id] = Candidate(
                item=collab.item,
                score=collab.score * w + cont.score * (1 - w),
                reason_kind=collab.reason_kind,
                explanations=collab.explanations + cont.explanations,
            )
        elif collab is not None:
            blended[item_id] = Candidate(
                collab.item, collab.score * w, collab.reason_kind, list(collab.explanations)
            )
        else:
            blended[item_id] = Candidate(
                cont.item, cont.score * (1 - w), cont.reason_kind, list(cont.explanations)
            )
    return blended


def diversity_filter(candidates: Iterable[Candidate], limit: int) -> List[Candidate]:
    """Greedy grade/origin-capped selection in score order.

    Pools smaller than ten candidates are too small to diversify and are
    returned in pure score order. When the caps leave slots open, the
    skipped candidates fill them in score order.
    """
    ordered = sorted(candidates, key=lambda c: c.score, reverse=True)
    if len(ordered) < DIVERSITY_MIN_POOL:
        return ordered[:limit]

    grade_counts: Counter = Counter()
    origin_counts: Counter = Counter()
    selected: List[Candidate] = []
    skipped: List[Candidate] = []

    for candidate in ordered:
        if len(selected) >= limit:
            break
        grade = candidate.item.grade
        origin = candidate.item.origin.lower()
        if grade_counts[grade] >= GRADE_CAP or origin_counts[origin] >= ORIGIN_CAP:
            skipped.append(candidate)
            continue
        grade_counts[grade] += 1
        origin_counts[origin] += 1
        selected.append(candidate)

    return selected + skipped[:limit - len(selected)]


def rank_candidates(candidates: Iterable[Candidate], limit: int) -> List[Candidate]:
    return sorted(candidates, key=lambda c: c.score, reverse=True)[:limit]


def trending_score(position: int) -> float:
    """0.9 for the top trending item, 0.1 less for each position after it."""
    return round(TRENDING_TOP_SCORE - TRENDING_DECAY * position, 4)


class RecommendationEngine:
    """Personalized recommendations for one catalog and interaction store."""

    def __init__(
        self,
        store: DataStore,
        cache: Cache,
        settings: Optional[Settings] = None,
        log: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.logger = log or logger
        self.cache = TolerantCache(cache, self.logger)
        self.clock = clock
        self.sleep = sleep
        self.metrics = MetricsService()

        self.reader = InteractionReader(store, self.logger)
        self.assigner = ExperimentAssigner(store, self.settings.experiment_salt, self.logger)
        self.profiles = ProfileBuilder(
            self.reader, self.cache, ttl_seconds=self.settings.profile_ttl, log=self.logger
        )
        self.user_similarity = UserSimilarityEngine(
            self.reader, self.cache, ttl_seconds=self.settings.similarity_ttl, log=self.logger
        )
        self.item_similarity = ItemSimilarityEngine(
            store, self.cache, ttl_seconds=self.settings.similarity_ttl, log=self.logger
        )

    # Public operations

    def generate_recommendations(
        self, user_id: str, limit: int = DEFAULT_LIMIT
    ) -> List[Recommendation]:
        """Generate, persist and cache up to `limit` recommendations.

        Args:
            user_id: User to recommend for. Unknown users get trending items.
            limit: Maximum number of recommendations (0 to max_limit).

        Returns:
            Recommendations ordered by score, best first.

        Raises:
            InvalidRequestError: If `limit` is negative, too large or not an int.
        """
        validate_count(limit, "limit", self.settings.max_limit)
        if limit == 0:
            return []

        start_time = time.time()
        key = recommendations_cache_key(user_id, limit)
        cached = self.cache.get(key)
        if cached is not None:
            self.metrics.record_cache_hit()
            return cached
        self.metrics.record_cache_miss()

        variant = self.assigner.get_variant(user_id, self.settings.recommendation_experiment)
        recommendations = self._generate(user_id, limit, variant)
        self._persist(recommendations)
        self.cache.set(key, recommendations, self.settings.recommendation_ttl)

        latency_ms = (time.time() - start_time) * 1000
        self.metrics.record_latency(latency_ms)
        self.logger.info(
            "Recommendations generated",
            extra={
                "user_id": user_id,
                "variant_id": variant.variant_id,
                "num_recommendations": len(recommendations),
                "algorithm": recommendations[0].algorithm.value if recommendations else None,
                "total_time_ms": round(latency_ms, 2),
            },
        )
        return recommendations

    def get_similar_items(
        self, item_id: str, limit: int = DEFAULT_SIMILAR_ITEMS_LIMIT
    ) -> List[CatalogItem]:
        """In-stock items most similar to `item_id`; empty for unknown items."""
        validate_count(limit, "limit", self.settings.max_limit)
        if limit == 0:
            return []
        try:
            return self.item_similarity.similar_items(item_id, limit)
        except StoreUnavailableError as e:
            self.logger.warning(
                "Similar items unavailable",
                extra={"degraded": True, "item_id": item_id, "error": e.message},
            )
            return []

    def track_recommendation_click(self, recommendation_id: str) -> None:
        """Record the first click on a recommendation. Never raises."""
        try:
            self.store.update_recommendation(recommendation_id, clicked_at=self.clock())
            self.logger.info(f"Recommendation clicked: {recommendation_id}")
        except (StoreUnavailableError, RecommendationNotFoundError) as e:
            self.logger.warning(
                "Failed to track recommendation click",
                extra={"degraded": True, "recommendation_id": recommendation_id, "error": e.message},
            )

    def track_recommendation_purchase(self, recommendation_id: str) -> None:
        """Record the first purchase from a recommendation. Never raises."""
        try:
            recommendation = self.store.update_recommendation(
                recommendation_id, purchased_at=self.clock()
            )
        except (StoreUnavailableError, RecommendationNotFoundError) as e:
            self.logger.warning(
                "Failed to track recommendation purchase",
                extra={"degraded": True, "recommendation_id": recommendation_id, "error": e.message},
            )
            return

        self.logger.info(f"Recommendation purchased: {recommendation_id}")
        self.update_recommendations_on_purchase(recommendation.user_id, recommendation.item_id)

    def update_recommendations_on_purchase(self, user_id: str, item_id: str) -> None:
        """Drop everything cached for the buyer and, best effort, their neighbors."""
        neighbors: List[SimilarityEdge] = []
        try:
            neighbors = self.user_similarity.similar_users(user_id)
        except MatchaRankError as e:
            self.logger.warning(
                "Could not resolve similarity neighbors for invalidation",
                extra={"degraded": True, "user_id": user_id, "error": e.message},
            )

        self.profiles.invalidate(user_id)
        self.user_similarity.invalidate(user_id)
        self.cache.delete_prefix(f"recommendations:{user_id}:")

        for edge in neighbors:
            self.user_similarity.invalidate(edge.target_id)
            self.cache.delete_prefix(f"recommendations:{edge.target_id}:")

        self.logger.info(
            f"Updated recommendations for user {user_id} after purchase of {item_id}",
            extra={"user_id": user_id, "item_id": item_id, "neighbors_invalidated": len(neighbors)},
        )

    def generate_batch_recommendations(
        self, user_ids: List[str], limit: int = DEFAULT_LIMIT
    ) -> Dict[str, List[Recommendation]]:
        """Generate recommendations for many users in paced chunks.

        A failure for one user yields an empty list for that user only.
        """
        validate_count(limit, "limit", self.settings.max_limit)
        results: Dict[str, List[Recommendation]] = {}
        chunks = list(chunked(user_ids, self.settings.batch_chunk_size))

        for chunk_number, chunk in enumerate(chunks):
            for user_id in chunk:
                try:
                    results[user_id] = self.generate_recommendations(user_id, limit)
                except MatchaRankError as e:
                    self.logger.error(
                        f"Failed to generate recommendations for user {user_id}: {e.message}"
                    )
                    results[user_id] = []
            if chunk_number < len(chunks) - 1:
                self.sleep(self.settings.batch_pause_seconds)

        self.logger.info(f"Batch recommendations completed for {len(results)} users")
        return results

    def get_recommendation_analytics(
        self, experiment_name: Optional[str] = None, days: int = 7
    ) -> Dict:
        """Click-through and conversion rates per experiment variant."""
        experiment_name = experiment_name or self.settings.recommendation_experiment
        since = self.clock() - timedelta(days=days)
        recommendations = retry_read(
            lambda: self.store.list_recommendations_since(since),
            "list_recommendations_since",
            log=self.logger,
        )
        experiment = retry_read(
            lambda: self.store.get_active_experiment(experiment_name),
            "get_active_experiment",
            log=self.logger,
        )

        stats: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {"recommendations": 0, "clicks": 0, "purchases": 0}
        )
        if experiment is not None:
            for variant in experiment.variants:
                stats[variant.variant_id]
        for rec in recommendations:
            row = stats[rec.variant_id or "unassigned"]
            row["recommendations"] += 1
            row["clicks"] += 1 if rec.clicked_at else 0
            row["purchases"] += 1 if rec.purchased_at else 0

        variants = []
        for variant_id, row in stats.items():
            total = row["recommendations"]
            variants.append(
                {
                    "variant_id": variant_id,
                    **row,
                    "click_through_rate": row["clicks"] / total if total else 0.0,
                    "conversion_rate": row["purchases"] / total if total else 0.0,
                }
            )

        total_recommendations = len(recommendations)
        total_clicks = sum(1 for r in recommendations if r.clicked_at)
        active = [v["click_through_rate"] for v in variants if v["recommendations"]]
        return {
            "experiment": experiment_name,
            "days": days,
            "total_recommendations": total_recommendations,
            "total_clicks": total_clicks,
            "avg_click_through_rate": sum(active) / len(active) if active else 0.0,
            "variants": variants,
        }

    def cleanup_old_recommendations(self, days_to_keep: int = 30) -> int:
        cutoff = self.clock() - timedelta(days=days_to_keep)
        deleted = self.store.delete_recommendations_before(cutoff)
        self.logger.info(f"Cleaned up {deleted} old recommendations")
        return deleted

    def cleanup_old_interactions(self, days_to_keep: int = 365) -> int:
        """Retention sweep over interaction events."""
        cutoff = self.clock() - timedelta(days=days_to_keep)
        deleted = self.store.delete_interactions_before(cutoff)
        self.logger.info(f"Cleaned up {deleted} old interaction events")
        return deleted

    def refresh_all_caches(self) -> int:
        cleared = sum(self.cache.delete_prefix(p) for p in RECOMMENDATION_CACHE_PREFIXES)
        self.logger.info(f"Refreshed all recommendation caches, cleared {cleared} entries")
        return cleared

    def get_performance_metrics(self) -> Dict:
        return self.metrics.get_metrics()

    def health_check(self) -> Dict:
        details = {}
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
        elif details["cache"] != "connected":
            status = "degraded"
        else:
            status = "healthy"
        return {"status": status, "details": details}

    # Generation pipeline

    def _generate(self, user_id: str, limit: int, variant: Variant) -> List[Recommendation]:
        profile = self._load_profile(user_id)
        similar_users = self._load_similar_users(user_id)

        if profile.is_cold and not similar_users:
            self.logger.info(
                "No history for user, using trending fallback",
                extra={"user_id": user_id, "strategy": "cold_start"},
            )
            return self._trending_recommendations(user_id, limit, variant, exclude=set())

        touched = self._touched_items(user_id, profile)
        algorithm = variant.algorithm

        collaborative: Dict[str, Candidate] = {}
        content: Dict[str, Candidate] = {}
        if algorithm in (AlgorithmKind.COLLABORATIVE, AlgorithmKind.HYBRID):
            collaborative = self._collaborative_candidates(similar_users, touched)
        if algorithm in (AlgorithmKind.CONTENT_BASED, AlgorithmKind.HYBRID):
            content = self._content_candidates(profile, touched)

        candidates = blend_candidates(
            collaborative, content, algorithm, variant.collaborative_weight
        )
        if not candidates:
            self.logger.info(
                "No personalized candidates, using trending fallback",
                extra={"user_id": user_id, "variant_id": variant.variant_id},
            )
            return self._trending_recommendations(user_id, limit, variant, exclude=touched)

        diversified = diversity_filter(candidates.values(), limit)
        fresh = self._fresh_candidates(exclude=touched | set(candidates))
        ranked = rank_candidates(diversified + fresh, limit)

        return [self._to_recommendation(user_id, c, algorithm, variant) for c in ranked]

    def _load_profile(self, user_id: str) -> UserProfile:
        try:
            return self.profiles.get_profile(user_id)
        except StoreUnavailableError as e:
            self.logger.warning(
                "Profile unavailable, treating user as cold",
                extra={"degraded": True, "user_id": user_id, "error": e.message},
            )
            return UserProfile.cold(user_id)

    def _load_similar_users(self, user_id: str) -> List[SimilarityEdge]:
        try:
            return self.user_similarity.similar_users(user_id)
        except StoreUnavailableError as e:
            self.logger.warning(
                "Similar users unavailable",
                extra={"degraded": True, "user_id": user_id, "error": e.message},
            )
            return []

    def _touched_items(self, user_id: str, profile: UserProfile) -> Set[str]:
        try:
            return self.reader.touched_items(user_id)
        except StoreUnavailableError:
            return set(profile.interacted_item_ids)

    def _in_stock_items(self, item_ids: Iterable[str]) -> Dict[str, CatalogItem]:
        ids = list(item_ids)
        items = retry_read(
            lambda: self.store.get_items_by_ids(ids), "get_items_by_ids", log=self.logger
        )
        return {item.item_id: item for item in items if item.in_stock}

    def _collaborative_candidates(
        self, similar_users: List[SimilarityEdge], touched: Set[str]
    ) -> Dict[str, Candidate]:
        """Score untouched items by what similar users did with them.

        Each neighbor event adds ``similarity * action_weight``; totals are
        divided by the number of neighbors and by the purchase weight so
        scores land in [0, 1].
        """
        if not similar_users:
            return {}

        raw_scores: Dict[str, float] = defaultdict(float)
        for edge in similar_users:
            try:
                events = self.reader.all_events(edge.target_id)
            except StoreUnavailableError:
                continue
            for event in events:
                if event.item_id not in touched:
                    raw_scores[event.item_id] += edge.similarity * event.weight

        items = self._in_stock_items(raw_scores)
        # Per-neighbor mean, rescaled by the purchase weight so a single
        # purchase by a perfectly similar user scores 1.0
        normalizer = len(similar_users) * MAX_ACTION_WEIGHT
        return {
            item_id: Candidate(
                item=items[item_id],
                score=min(score / normalizer, 1.0),
                reason_kind=ReasonKind.SIMILAR_USERS,
                explanations=[COLLABORATIVE_EXPLANATION],
            )
            for item_id, score in raw_scores.items()
            if item_id in items
        }

    def _content_candidates(
        self, profile: UserProfile, touched: Set[str]
    ) -> Dict[str, Candidate]:
        if profile.is_cold:
            return {}

        try:
            items = retry_read(
                lambda: self.store.list_items(in_stock_only=True), "list_items", log=self.logger
            )
        except StoreUnavailableError:
            return {}

        candidates = {}
        preferred_flavors = set(profile.flavor_preferences)
        low, high = profile.price_range
        for item in items:
            if item.item_id in touched:
                continue
            score, explanations = profile_item_score(profile, item)
            if score <= CONTENT_SCORE_FLOOR:
                continue
            if item.flavor_set & preferred_flavors:
                reason_kind = ReasonKind.FLAVOR_MATCH
            elif low <= item.price <= high:
                reason_kind = ReasonKind.PRICE_PREFERENCE
            else:
                reason_kind = ReasonKind.SIMILAR_PRODUCTS
            candidates[item.item_id] = Candidate(item, score, reason_kind, explanations)
        return candidates

    def _fresh_candidates(self, exclude: Set[str]) -> List[Candidate]:
        since = self.clock() - timedelta(days=FRESHNESS_WINDOW_DAYS)
        try:
            items = retry_read(
                lambda: self.store.list_items_created_since(since),
                "list_items_created_since",
                log=self.logger,
            )
        except StoreUnavailableError:
            return []

        fresh = [i for i in items if i.in_stock and i.item_id not in exclude]
        fresh.sort(key=lambda i: i.created_at, reverse=True)
        return [
            Candidate(item, FRESHNESS_SCORE, ReasonKind.NEW_ARRIVAL, [FRESHNESS_EXPLANATION])
            for item in fresh[:FRESHNESS_MAX_ITEMS]
        ]

    def _trending_candidates(self, limit: int, exclude: Set[str]) -> List[Candidate]:
        """In-stock items by interaction count over the last 7 days.

        When the window holds too few items the list is topped up by overall
        catalog popularity.
        """
        wanted = min(limit, TRENDING_MAX_ITEMS)
        try:
            events = self.reader.events_within(TRENDING_WINDOW_DAYS, now=self.clock())
            counts = Counter(e.item_id for e in events if e.item_id not in exclude)
            in_stock = self._in_stock_items(counts)
            ordered = [in_stock[i] for i, _ in counts.most_common() if i in in_stock]

            if len(ordered) < wanted:
                seen = {i.item_id for i in ordered} | exclude
                catalog = retry_read(
                    lambda: self.store.list_items(in_stock_only=True), "list_items", log=self.logger
                )
                backfill = sorted(
                    (i for i in catalog if i.item_id not in seen),
                    key=lambda i: 0.1 * i.view_count + i.purchase_count,
                    reverse=True,
                )
                ordered.extend(backfill)
        except StoreUnavailableError as e:
            self.logger.warning(
                "Trending items unavailable",
                extra={"degraded": True, "error": e.message},
            )
            return []

        return [
            Candidate(item, trending_score(position), ReasonKind.TRENDING, [TRENDING_EXPLANATION])
            for position, item in enumerate(ordered[:wanted])
        ]

    def _trending_recommendations(
        self, user_id: str, limit: int, variant: Variant, exclude: Set[str]
    ) -> List[Recommendation]:
        return [
            self._to_recommendation(user_id, c, AlgorithmKind.TRENDING, variant)
            for c in self._trending_candidates(limit, exclude)
        ]

    def _to_recommendation(
        self,
        user_id: str,
        candidate: Candidate,
        algorithm: AlgorithmKind,
        variant: Variant,
    ) -> Recommendation:
        score = min(max(candidate.score, 0.0), 1.0)
        return Recommendation(
            recommendation_id=str(uuid.uuid4()),
            user_id=user_id,
            item_id=candidate.item_id,
            score=score,
            reason=RecommendationReason(
                kind=candidate.reason_kind,
                explanation="; ".join(candidate.explanations),
                confidence=round(score, 4),
            ),
            algorithm=algorithm,
            variant_id=variant.variant_id,
            created_at=self.clock(),
        )

    def _persist(self, recommendations: List[Recommendation]) -> None:
        for recommendation in recommendations:
            try:
                self.store.insert_recommendation(recommendation)
            except StoreUnavailableError as e:
                self.logger.warning(
                    "Failed to persist recommendation",
                    extra={
                        "degraded": True,
                        "recommendation_id": recommendation.recommendation_id,
                        "user_id": recommendation.user_id,
                        "error": e.message,
                    },
                )
