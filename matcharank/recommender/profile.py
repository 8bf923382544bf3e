"""User profile builder.

Aggregates a user's recent interactions into ranked grade, flavor and origin
preferences plus a padded price band. Profiles are derived data: they are
rebuilt on demand and only cached for a short time.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, TypeVar

import numpy as np

from matcharank.recommender.cache import Cache
from matcharank.recommender.interactions import DEFAULT_RECENT_EVENTS, InteractionReader
from matcharank.recommender.models import UserProfile
from matcharank.utils import retry_read

# Configure module logger
logger = logging.getLogger(__name__)

TOP_GRADES = 3
TOP_FLAVORS = 5
PRICE_LOW_PERCENTILE = 10
PRICE_HIGH_PERCENTILE = 90
PRICE_PADDING = 0.2
DEFAULT_PROFILE_TTL = 300

K = TypeVar("K")


def profile_cache_key(user_id: str) -> str:
    return f"user_profile:{user_id}"


def _ranked(scores: Dict[K, float], top_n: Optional[int] = None) -> List[K]:
    # sorted() is stable, so ties keep first-seen (most recent) order
    ranked = [key for key, _ in sorted(scores.items(), key=lambda kv: -kv[1])]
    return ranked[:top_n] if top_n is not None else ranked


class ProfileBuilder:
    """Builds and caches `UserProfile` objects."""

    def __init__(
        self,
        reader: InteractionReader,
        cache: Cache,
        ttl_seconds: int = DEFAULT_PROFILE_TTL,
        max_events: int = DEFAULT_RECENT_EVENTS,
        log: Optional[logging.Logger] = None,
    ):
        self.reader = reader
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.max_events = max_events
        self.logger = log or logger

    def get_profile(self, user_id: str) -> UserProfile:
        """Return the cached profile or build a fresh one."""
        cached = self.cache.get(profile_cache_key(user_id))
        if cached is not None:
            return cached

        profile = self.build_profile(user_id)
        self.cache.set(profile_cache_key(user_id), profile, self.ttl_seconds)
        return profile

    def invalidate(self, user_id: str) -> None:
        self.cache.delete(profile_cache_key(user_id))

    def build_profile(self, user_id: str) -> UserProfile:
        """Aggregate the user's most recent events into a profile.

        Each event contributes its action weight (view 1, click 2, add to
        cart 5, purchase 10) to the grade, every flavor tag and the origin of
        the item it touched. Events on items no longer in the catalog are
        skipped.

        Args:
            user_id: User to profile.

        Returns:
            The user's profile, or a cold profile if they have no events.
        """
        events = self.reader.recent_events(user_id, limit=self.max_events)
        if not events:
            self.logger.debug(f"No interactions for user {user_id}, cold profile")
            return UserProfile.cold(user_id)

        item_ids = list(dict.fromkeys(e.item_id for e in events))
        store = self.reader.store
        items = {
            item.item_id: item
            for item in retry_read(
                lambda: store.get_items_by_ids(item_ids), "get_items_by_ids", log=self.logger
            )
        }

        grade_scores: Dict = defaultdict(float)
        flavor_scores: Dict = defaultdict(float)
        origin_scores: Dict = defaultdict(float)

        for event in events:
            item = items.get(event.item_id)
            if item is None:
                continue
            weight = event.weight
            grade_scores[item.grade] += weight
            for flavor in item.flavors:
                flavor_scores[flavor] += weight
            origin_scores[item.origin] += weight

        price_range = (0.0, float("inf"))
        prices = [items[i].price for i in item_ids if i in items]
        if prices:
            low, high = np.percentile(prices, [PRICE_LOW_PERCENTILE, PRICE_HIGH_PERCENTILE])
            price_range = (
                float(low) * (1 - PRICE_PADDING),
                float(high) * (1 + PRICE_PADDING),
            )

        profile = UserProfile(
            user_id=user_id,
            preferred_grades=_ranked(grade_scores, TOP_GRADES),
            flavor_preferences=_ranked(flavor_scores, TOP_FLAVORS),
            price_range=price_range,
            preferred_origins=_ranked(origin_scores),
            interacted_item_ids=frozenset(item_ids),
            event_count=len(events),
        )

        self.logger.debug(
            "Built user profile",
            extra={
                "user_id": user_id,
                "events": len(events),
                "preferred_grades": [g.value for g in profile.preferred_grades],
            },
        )
        return profile
