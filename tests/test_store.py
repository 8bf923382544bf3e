"""Tests for the in-memory data store and CSV loaders."""

from datetime import timedelta

import pandas as pd
import pytest

from conftest import NOW, make_event
from matcharank.exceptions import RecommendationNotFoundError
from matcharank.recommender.models import (
    ActionKind,
    AlgorithmKind,
    ExperimentAssignment,
    Flavor,
    Grade,
    Recommendation,
    RecommendationReason,
    ReasonKind,
)
from matcharank.recommender.store import (
    InMemoryStore,
    create_store_from_csv,
    load_catalog_csv,
    load_interactions_csv,
)


def _recommendation(rec_id="r1", created_at=NOW):
    return Recommendation(
        recommendation_id=rec_id,
        user_id="alice",
        item_id="m05",
        score=0.5,
        reason=RecommendationReason(ReasonKind.TRENDING, "Trending this week"),
        algorithm=AlgorithmKind.TRENDING,
        variant_id="hybrid_50",
        created_at=created_at,
    )


def test_user_interactions_newest_first(store):
    """Test that a user's interactions come back newest first and respect limit."""
    events = store.get_user_interactions("alice")
    assert [e.item_id for e in events] == ["m01", "m02", "m03", "m04"]

    limited = store.get_user_interactions("alice", limit=2)
    assert [e.item_id for e in limited] == ["m01", "m02"]


def test_list_items_in_stock_only(store):
    """Test that out-of-stock items are excluded on request."""
    all_ids = {i.item_id for i in store.list_items()}
    in_stock_ids = {i.item_id for i in store.list_items(in_stock_only=True)}
    assert "m12" in all_ids
    assert "m12" not in in_stock_ids


def test_items_created_since(store):
    recent = store.list_items_created_since(NOW - timedelta(days=30))
    assert [i.item_id for i in recent] == ["m13"]


def test_assignment_first_write_wins(store):
    """Test that a stored assignment is never overwritten."""
    first = ExperimentAssignment("alice", "exp", "content_only", NOW)
    second = ExperimentAssignment("alice", "exp", "hybrid_50", NOW)
    store.save_assignment(first)
    store.save_assignment(second)
    assert store.get_assignment("alice", "exp").variant_id == "content_only"


def test_update_recommendation_sets_outcomes_once(store):
    """Test that clicked_at and purchased_at are written only the first time."""
    store.insert_recommendation(_recommendation())

    first_click = NOW + timedelta(minutes=1)
    store.update_recommendation("r1", clicked_at=first_click)
    updated = store.update_recommendation("r1", clicked_at=NOW + timedelta(minutes=5))

    assert updated.clicked_at == first_click
    assert updated.purchased_at is None


def test_update_unknown_recommendation_raises(store):
    with pytest.raises(RecommendationNotFoundError):
        store.update_recommendation("missing", clicked_at=NOW)


def test_retention_sweeps(store):
    """Test that old recommendations and interactions are deleted."""
    store.insert_recommendation(_recommendation("old", NOW - timedelta(days=40)))
    store.insert_recommendation(_recommendation("new", NOW))
    store.add_interaction(make_event("dave", "m01", days_ago=500))

    assert store.delete_recommendations_before(NOW - timedelta(days=30)) == 1
    assert store.get_recommendation("new") is not None
    assert store.delete_interactions_before(NOW - timedelta(days=365)) == 1
    assert store.get_user_interactions("dave") == []


def test_load_catalog_csv(tmp_path):
    """Test loading a catalog CSV with optional columns missing for some rows."""
    csv_path = tmp_path / "catalog.csv"
    pd.DataFrame(
        [
            {"item_id": "a1", "name": "Uji Ceremonial", "grade": "Ceremonial", "origin": "Uji",
             "price": 40.0, "flavors": "umami|sweet|unknown", "description": "Rich"},
            {"item_id": "a2", "name": "Latte Blend", "grade": "culinary", "origin": "Kagoshima",
             "price": 15.0, "flavors": None, "description": None},
        ]
    ).to_csv(csv_path, index=False)

    items = load_catalog_csv(str(csv_path))

    assert [i.item_id for i in items] == ["a1", "a2"]
    assert items[0].grade == Grade.CEREMONIAL
    assert items[0].flavors == (Flavor.UMAMI, Flavor.SWEET)
    assert items[1].flavors == ()
    assert items[1].description == ""
    assert items[1].in_stock is True


def test_load_catalog_csv_missing_columns(tmp_path):
    csv_path = tmp_path / "catalog.csv"
    pd.DataFrame([{"item_id": "a1", "name": "x"}]).to_csv(csv_path, index=False)

    with pytest.raises(ValueError, match="missing required columns"):
        load_catalog_csv(str(csv_path))


def test_load_interactions_csv_rejects_unknown_actions(tmp_path):
    csv_path = tmp_path / "events.csv"
    pd.DataFrame(
        [{"user_id": "u1", "item_id": "a1", "action": "wishlist", "timestamp": "2026-04-01T10:00:00Z"}]
    ).to_csv(csv_path, index=False)

    with pytest.raises(ValueError, match="unknown actions"):
        load_interactions_csv(str(csv_path))


def test_create_store_from_csv(tmp_path):
    """Test building a store from catalog and interaction CSVs."""
    catalog_path = tmp_path / "catalog.csv"
    events_path = tmp_path / "events.csv"
    pd.DataFrame(
        [{"item_id": "a1", "name": "Uji Ceremonial", "grade": "ceremonial", "origin": "Uji", "price": 40.0}]
    ).to_csv(catalog_path, index=False)
    pd.DataFrame(
        [{"user_id": "u1", "item_id": "a1", "action": "purchase", "timestamp": "2026-04-01T10:00:00Z"}]
    ).to_csv(events_path, index=False)

    store = create_store_from_csv(str(catalog_path), str(events_path))

    assert isinstance(store, InMemoryStore)
    assert store.get_item("a1").name == "Uji Ceremonial"
    events = store.get_user_interactions("u1")
    assert events[0].action == ActionKind.PURCHASE
    assert events[0].timestamp.tzinfo is not None


def test_missing_csv_raises():
    with pytest.raises(FileNotFoundError):
        load_catalog_csv("does/not/exist.csv")


def test_generated_fake_data_loads(tmp_path):
    """Fake data from the generator script loads through the CSV loaders."""
    from scripts.generate_fake_data import generate_fake_catalog, generate_fake_interactions

    catalog = generate_fake_catalog(num_items=12, now=NOW, seed=7)
    events = generate_fake_interactions(
        catalog["item_id"], num_users=4, num_interactions=40, end_date=NOW, seed=7
    )
    catalog_path = tmp_path / "catalog.csv"
    events_path = tmp_path / "events.csv"
    catalog.to_csv(catalog_path, index=False)
    events.to_csv(events_path, index=False)

    store = create_store_from_csv(str(catalog_path), str(events_path))

    assert len(store.list_items()) == 12
    assert len(store.list_interactions()) == 40
    assert all(item.flavors for item in store.list_items())
    assert all(e.timestamp <= NOW for e in store.list_interactions())


def test_fake_data_rejects_bad_parameters():
    from scripts.generate_fake_data import generate_fake_catalog, generate_fake_interactions

    with pytest.raises(ValueError):
        generate_fake_catalog(num_items=0)
    with pytest.raises(ValueError):
        generate_fake_interactions([], num_users=2, num_interactions=5)
