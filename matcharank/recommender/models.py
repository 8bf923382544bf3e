"""Domain types shared by the recommendation and search engines."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class Grade(str, Enum):
    """Matcha grade tiers, best first."""

    CEREMONIAL = "ceremonial"
    PREMIUM = "premium"
    CULINARY = "culinary"
    INGREDIENT = "ingredient"


class Flavor(str, Enum):
    SWEET = "sweet"
    UMAMI = "umami"
    BITTER = "bitter"
    GRASSY = "grassy"
    NUTTY = "nutty"
    CREAMY = "creamy"
    EARTHY = "earthy"
    FLORAL = "floral"


class ActionKind(str, Enum):
    VIEW = "view"
    CLICK = "click"
    ADD_TO_CART = "add_to_cart"
    PURCHASE = "purchase"


class AlgorithmKind(str, Enum):
    COLLABORATIVE = "collaborative"
    CONTENT_BASED = "content_based"
    HYBRID = "hybrid"
    TRENDING = "trending"


class ReasonKind(str, Enum):
    SIMILAR_USERS = "similar_users"
    SIMILAR_PRODUCTS = "similar_products"
    PRICE_PREFERENCE = "price_preference"
    FLAVOR_MATCH = "flavor_match"
    TRENDING = "trending"
    NEW_ARRIVAL = "new_arrival"


# Interaction strength used by the profile builder and collaborative scoring
ACTION_WEIGHTS: Dict[ActionKind, float] = {
    ActionKind.VIEW: 1.0,
    ActionKind.CLICK: 2.0,
    ActionKind.ADD_TO_CART: 5.0,
    ActionKind.PURCHASE: 10.0,
}
MAX_ACTION_WEIGHT = max(ACTION_WEIGHTS.values())


@dataclass
class CatalogItem:
    """A matcha product as provided by the catalog store.

    Stock, price and popularity counters are owned by the ingestion
    pipeline; everything else is fixed once the item exists.
    """

    item_id: str
    name: str
    grade: Grade
    origin: str
    price: float
    provider: str = ""
    description: str = ""
    flavors: Tuple[Flavor, ...] = ()
    in_stock: bool = True
    view_count: int = 0
    purchase_count: int = 0
    created_at: Optional[datetime] = None
    size: str = ""
    weight_grams: int = 30

    @property
    def flavor_set(self) -> FrozenSet[Flavor]:
        return frozenset(self.flavors)


@dataclass(frozen=True)
class InteractionEvent:
    user_id: str
    item_id: str
    action: ActionKind
    timestamp: datetime

    @property
    def weight(self) -> float:
        return ACTION_WEIGHTS[self.action]


@dataclass
class UserProfile:
    """Preference summary derived from a user's recent interactions.

    A profile with no events is "cold": preferences are empty and the price
    range is unbounded, and the generator skips straight to trending items.
    """

    user_id: str
    preferred_grades: List[Grade] = field(default_factory=list)
    flavor_preferences: List[Flavor] = field(default_factory=list)
    price_range: Tuple[float, float] = (0.0, float("inf"))
    preferred_origins: List[str] = field(default_factory=list)
    interacted_item_ids: FrozenSet[str] = frozenset()
    event_count: int = 0

    @property
    def is_cold(self) -> bool:
        return self.event_count == 0

    @classmethod
    def cold(cls, user_id: str) -> "UserProfile":
        return cls(user_id=user_id)


@dataclass(frozen=True)
class SimilarityEdge:
    """Similarity between two users or two items, with its evidence."""

    source_id: str
    target_id: str
    similarity: float
    evidence: Tuple[str, ...] = ()


@dataclass
class Variant:
    variant_id: str
    name: str
    weight: int
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def algorithm(self) -> AlgorithmKind:
        return AlgorithmKind(self.config.get("algorithm", AlgorithmKind.HYBRID.value))

    @property
    def collaborative_weight(self) -> float:
        """Collaborative share of a blended score (content gets the rest)."""
        if self.algorithm == AlgorithmKind.COLLABORATIVE:
            return 1.0
        if self.algorithm == AlgorithmKind.CONTENT_BASED:
            return 0.0
        return float(self.config.get("collaborative_weight", 0.5))


@dataclass
class Experiment:
    experiment_id: str
    name: str
    variants: List[Variant]
    description: str = ""
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @property
    def total_weight(self) -> int:
        return sum(v.weight for v in self.variants)


@dataclass(frozen=True)
class ExperimentAssignment:
    """A user's variant in one experiment. Never changes once stored."""

    user_id: str
    experiment_id: str
    variant_id: str
    assigned_at: datetime


@dataclass(frozen=True)
class RecommendationReason:
    kind: ReasonKind
    explanation: str
    confidence: float = 0.8


@dataclass
class Recommendation:
    """One surfaced item for one user, stored for analytics.

    Only `clicked_at` and `purchased_at` are ever updated, each at most once.
    """

    recommendation_id: str
    user_id: str
    item_id: str
    score: float
    reason: RecommendationReason
    algorithm: AlgorithmKind
    variant_id: Optional[str]
    created_at: datetime
    clicked_at: Optional[datetime] = None
    purchased_at: Optional[datetime] = None


@dataclass
class SearchQueryRecord:
    search_id: str
    query: str
    filters: Dict[str, Any]
    result_count: int
    response_time_ms: float
    created_at: datetime
    user_id: Optional[str] = None
    click_through_rate: float = 0.0
    cache_hit: bool = False


@dataclass(frozen=True)
class AnalyticsEvent:
    event: str
    data: Dict[str, Any]
    timestamp: datetime
    user_id: Optional[str] = None
