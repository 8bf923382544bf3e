"""Tests for deterministic experiment assignment."""

import pytest

from matcharank.exceptions import ExperimentConfigError, StoreUnavailableError
from matcharank.recommender.experiments import (
    ExperimentAssigner,
    default_variants,
    hash_bucket,
    select_variant,
    validate_experiment,
)
from matcharank.recommender.models import AlgorithmKind, Experiment, Variant
from matcharank.recommender.store import InMemoryStore


class UnreachableAssignmentStore(InMemoryStore):
    """Store whose assignment table cannot be read or written."""

    def get_assignment(self, user_id, experiment_id):
        raise StoreUnavailableError("get_assignment")

    def save_assignment(self, assignment):
        raise StoreUnavailableError("save_assignment")


def test_assignment_is_idempotent():
    """Test that assigning the same user twice returns the same variant."""
    assigner = ExperimentAssigner(InMemoryStore(), salt="test-salt")

    first = assigner.assign_variant("alice")
    second = assigner.assign_variant("alice")

    assert first == second


def test_assignment_is_persisted():
    store = InMemoryStore()
    assigner = ExperimentAssigner(store, salt="test-salt")

    variant_id = assigner.assign_variant("bob")
    experiment = store.get_active_experiment("recommendation_algorithm")

    assert store.get_assignment("bob", experiment.experiment_id).variant_id == variant_id


def test_stored_assignment_wins_over_hash():
    """Test that an existing assignment is returned even if the salt changes."""
    store = InMemoryStore()
    variant_id = ExperimentAssigner(store, salt="salt-one").assign_variant("carol")

    for salt in ("salt-two", "salt-three", "salt-four"):
        assert ExperimentAssigner(store, salt=salt).assign_variant("carol") == variant_id


def test_hash_bucket_is_stable_and_in_range():
    buckets = [hash_bucket(f"user-{n}", "salt") for n in range(200)]
    assert all(0 <= b < 100 for b in buckets)
    assert hash_bucket("user-1", "salt") == hash_bucket("user-1", "salt")


def test_select_variant_uses_cumulative_weights():
    variants = default_variants()
    assert select_variant(variants, 0).variant_id == "collaborative_only"
    assert select_variant(variants, 20).variant_id == "collaborative_only"
    assert select_variant(variants, 21).variant_id == "content_only"
    assert select_variant(variants, 99).variant_id == "hybrid_70"


def test_default_variants_cover_all_strategies():
    """Test the default experiment: five equal variants summing to 100."""
    variants = default_variants()
    assert sum(v.weight for v in variants) == 100
    assert {v.algorithm for v in variants} == {
        AlgorithmKind.COLLABORATIVE,
        AlgorithmKind.CONTENT_BASED,
        AlgorithmKind.HYBRID,
    }
    assert [v.collaborative_weight for v in variants] == [1.0, 0.0, 0.3, 0.5, 0.7]


def test_validate_experiment_rejects_bad_weights():
    experiment = Experiment("e1", "broken", [Variant("a", "A", 60, {}), Variant("b", "B", 30, {})])
    with pytest.raises(ExperimentConfigError):
        validate_experiment(experiment)


def test_validate_experiment_rejects_unknown_algorithm():
    experiment = Experiment("e1", "broken", [Variant("a", "A", 100, {"algorithm": "magic"})])
    with pytest.raises(ExperimentConfigError):
        validate_experiment(experiment)


def test_assignment_survives_store_outage():
    """Test that an unreachable assignment table still yields a variant."""
    assigner = ExperimentAssigner(UnreachableAssignmentStore(), salt="test-salt")

    variant = assigner.get_variant("dave")

    expected = select_variant(default_variants(), hash_bucket("dave", "test-salt"))
    assert variant.variant_id == expected.variant_id
