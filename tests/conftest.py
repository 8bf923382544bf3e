"""Shared fixtures: a small matcha catalog, interaction history and services."""

from datetime import datetime, timedelta, timezone

import pytest

from matcharank.config import Settings
from matcharank.recommender.cache import InMemoryCache
from matcharank.recommender.engine import RecommendationEngine
from matcharank.recommender.models import (
    ActionKind,
    CatalogItem,
    Experiment,
    Flavor,
    Grade,
    InteractionEvent,
    Variant,
)
from matcharank.recommender.store import InMemoryStore
from matcharank.search.service import SearchService

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_item(item_id, name, grade, origin, price, flavors=(), **kwargs):
    kwargs.setdefault("provider", "Ippodo")
    kwargs.setdefault("created_at", NOW - timedelta(days=400))
    return CatalogItem(
        item_id=item_id,
        name=name,
        grade=Grade(grade),
        origin=origin,
        price=price,
        flavors=tuple(Flavor(f) for f in flavors),
        **kwargs,
    )


def make_event(user_id, item_id, action="purchase", days_ago=1.0):
    return InteractionEvent(
        user_id=user_id,
        item_id=item_id,
        action=ActionKind(action),
        timestamp=NOW - timedelta(days=days_ago),
    )


def single_variant_experiment(variant_id, algorithm, collaborative_weight=None):
    """An active experiment that sends every user to one variant."""
    config = {"algorithm": algorithm}
    if collaborative_weight is not None:
        config["collaborative_weight"] = collaborative_weight
    return Experiment(
        experiment_id=f"exp-{variant_id}",
        name="recommendation_algorithm",
        variants=[Variant(variant_id, variant_id, 100, config)],
    )


@pytest.fixture
def catalog():
    """Fourteen items across every grade and five origins."""
    return [
        make_item("m01", "Ippodo Uji Ceremonial Matcha", "ceremonial", "Uji, Kyoto", 42.0,
                  ["umami", "sweet"], view_count=120, purchase_count=15,
                  description="First flush tencha, stone ground"),
        make_item("m02", "Wako", "ceremonial", "Uji, Kyoto", 38.0, ["umami", "creamy"],
                  provider="Marukyu Koyamaen", description="Smooth and mellow"),
        make_item("m03", "Aiya Nishio Ceremonial", "ceremonial", "Nishio, Aichi", 35.0,
                  ["umami", "grassy"], provider="Aiya"),
        make_item("m04", "Jade Leaf Culinary Matcha", "culinary", "Kagoshima", 18.0,
                  ["bitter", "grassy"], provider="Jade Leaf", description="For lattes and baking"),
        make_item("m05", "Matchaful Premium Daily", "premium", "Shizuoka", 30.0,
                  ["sweet", "nutty"], provider="Matchaful"),
        make_item("m06", "Encha Latte Grade", "culinary", "Uji, Kyoto", 22.0,
                  ["earthy", "bitter"], provider="Encha"),
        make_item("m07", "Ippodo Sayaka", "ceremonial", "Uji, Kyoto", 55.0, ["umami", "floral"]),
        make_item("m08", "Aiya Premium Nishio", "premium", "Nishio, Aichi", 28.0,
                  ["creamy", "sweet"], provider="Aiya"),
        make_item("m09", "Yame Okumidori Matcha", "premium", "Yame, Fukuoka", 48.0,
                  ["umami", "nutty"], provider="Matchaful"),
        make_item("m10", "Kagoshima Organic Ceremonial", "ceremonial", "Kagoshima", 45.0,
                  ["grassy", "floral"], provider="Encha"),
        make_item("m11", "Baking Matcha Powder", "ingredient", "Shizuoka", 12.0, ["bitter"],
                  provider="Jade Leaf", weight_grams=100),
        make_item("m12", "Ippodo Ummon", "ceremonial", "Uji, Kyoto", 60.0, ["umami"],
                  in_stock=False),
        make_item("m13", "New Harvest Shincha Matcha", "premium", "Yame, Fukuoka", 90.0,
                  ["floral"], provider="Matchaful", created_at=NOW - timedelta(days=3)),
        make_item("m14", "Bulk Ingredient Matcha", "ingredient", "Kagoshima", 25.0, ["earthy"],
                  provider="Jade Leaf", weight_grams=500),
    ]


@pytest.fixture
def interactions():
    """Three overlapping shoppers; every event falls inside the trending window."""
    return [
        make_event("alice", "m01", "purchase", 1),
        make_event("alice", "m02", "purchase", 2),
        make_event("alice", "m03", "add_to_cart", 3),
        make_event("alice", "m04", "view", 4),
        make_event("bob", "m01", "purchase", 1),
        make_event("bob", "m02", "click", 2),
        make_event("bob", "m05", "purchase", 2),
        make_event("bob", "m06", "view", 3),
        make_event("carol", "m02", "purchase", 1),
        make_event("carol", "m03", "purchase", 2),
        make_event("carol", "m07", "add_to_cart", 5),
    ]


@pytest.fixture
def store(catalog, interactions):
    return InMemoryStore(items=catalog, interactions=interactions)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        redis_url=None,
        index_snapshot_path=None,
        catalog_csv=None,
        interactions_csv=None,
        batch_pause_seconds=0.0,
    )


@pytest.fixture
def engine(store, cache, test_settings):
    return RecommendationEngine(
        store, cache, settings=test_settings, clock=lambda: NOW, sleep=lambda seconds: None
    )


@pytest.fixture
def search_service(store, cache, test_settings):
    return SearchService(store, cache, settings=test_settings, clock=lambda: NOW)
