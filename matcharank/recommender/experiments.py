"""Deterministic experiment assignment.

Each user lands in exactly one variant of an experiment. The bucket comes
from a salted hash of the user id, and the first assignment is persisted so
later lookups return the stored row instead of re-hashing.
"""

import hashlib
import logging
import uuid
from typing import List, Optional

from matcharank.exceptions import ExperimentConfigError, StoreUnavailableError
from matcharank.recommender.models import (
    AlgorithmKind,
    Experiment,
    ExperimentAssignment,
    Variant,
)
from matcharank.recommender.store import DataStore
from matcharank.utils import retry_read, utc_now

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_EXPERIMENT_NAME = "recommendation_algorithm"
NUM_BUCKETS = 100
HYBRID_WEIGHTS = (0.3, 0.5, 0.7)


def default_variants() -> List[Variant]:
    """Collaborative-only, content-only and three hybrid blends, equal traffic."""
    variants = [
        Variant("collaborative_only", "Collaborative only", 20,
                {"algorithm": AlgorithmKind.COLLABORATIVE.value}),
        Variant("content_only", "Content only", 20,
                {"algorithm": AlgorithmKind.CONTENT_BASED.value}),
    ]
    for weight in HYBRID_WEIGHTS:
        variants.append(
            Variant(
                f"hybrid_{int(weight * 100)}",
                f"Hybrid {int(weight * 100)}% collaborative",
                20,
                {"algorithm": AlgorithmKind.HYBRID.value, "collaborative_weight": weight},
            )
        )
    return variants


def validate_experiment(experiment: Experiment) -> None:
    """Check that variants exist and their weights sum to 100.

    Raises:
        ExperimentConfigError: If the experiment cannot bucket users.
    """
    if not experiment.variants:
        raise ExperimentConfigError(experiment.name, "no variants defined")
    if experiment.total_weight != NUM_BUCKETS:
        raise ExperimentConfigError(
            experiment.name,
            f"variant weights sum to {experiment.total_weight}, expected {NUM_BUCKETS}",
        )
    for variant in experiment.variants:
        algorithm = variant.config.get("algorithm", AlgorithmKind.HYBRID.value)
        if algorithm not in AlgorithmKind._value2member_map_:
            raise ExperimentConfigError(
                experiment.name,
                f"variant '{variant.variant_id}' has unknown algorithm '{algorithm}'",
            )


def hash_bucket(user_id: str, salt: str) -> int:
    """Map a user to a stable percentile bucket in [0, 99]."""
    digest = hashlib.sha256(f"{user_id}{salt}".encode("utf-8")).hexdigest()
    return int(digest, 16) % NUM_BUCKETS


def select_variant(variants: List[Variant], bucket: int) -> Variant:
    """First variant whose cumulative weight reaches the bucket."""
    cumulative = 0
    for variant in variants:
        cumulative += variant.weight
        if cumulative >= bucket:
            return variant
    return variants[-1]


class ExperimentAssigner:
    """Assigns users to experiment variants and persists the assignment."""

    def __init__(
        self,
        store: DataStore,
        salt: str,
        log: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.salt = salt
        self.logger = log or logger

    def get_or_create_experiment(self, experiment_name: str) -> Experiment:
        """Return the active experiment, creating the default one if missing."""
        experiment = retry_read(
            lambda: self.store.get_active_experiment(experiment_name),
            "get_active_experiment",
            log=self.logger,
        )
        if experiment is not None:
            return experiment

        experiment = Experiment(
            experiment_id=str(uuid.uuid4()),
            name=experiment_name,
            description="Ranking algorithm comparison",
            variants=default_variants(),
            is_active=True,
            start_date=utc_now(),
        )
        validate_experiment(experiment)
        self.store.create_experiment(experiment)
        self.logger.info(
            "Created default experiment",
            extra={"experiment": experiment_name, "variants": len(experiment.variants)},
        )
        return experiment

    def get_variant(self, user_id: str, experiment_name: str = DEFAULT_EXPERIMENT_NAME) -> Variant:
        """Resolve the user's variant, persisting a new assignment if needed.

        An existing assignment always wins. When the store cannot be read the
        hashed variant is returned without being persisted; when persisting
        fails the hashed variant is still used for this call.
        """
        try:
            experiment = self.get_or_create_experiment(experiment_name)
        except StoreUnavailableError as e:
            variants = default_variants()
            variant = select_variant(variants, hash_bucket(user_id, self.salt))
            self.logger.warning(
                "Experiment lookup failed, using unpersisted default variant",
                extra={"degraded": True, "user_id": user_id, "error": e.message},
            )
            return variant

        variants_by_id = {v.variant_id: v for v in experiment.variants}

        try:
            existing = retry_read(
                lambda: self.store.get_assignment(user_id, experiment.experiment_id),
                "get_assignment",
                log=self.logger,
            )
        except StoreUnavailableError as e:
            variant = select_variant(experiment.variants, hash_bucket(user_id, self.salt))
            self.logger.warning(
                "Assignment lookup failed, using unpersisted variant",
                extra={"degraded": True, "user_id": user_id, "error": e.message},
            )
            return variant

        if existing is not None and existing.variant_id in variants_by_id:
            return variants_by_id[existing.variant_id]

        validate_experiment(experiment)
        variant = select_variant(experiment.variants, hash_bucket(user_id, self.salt))
        assignment = ExperimentAssignment(
            user_id=user_id,
            experiment_id=experiment.experiment_id,
            variant_id=variant.variant_id,
            assigned_at=utc_now(),
        )

        try:
            self.store.save_assignment(assignment)
        except StoreUnavailableError as e:
            self.logger.warning(
                "Failed to persist experiment assignment",
                extra={
                    "degraded": True,
                    "user_id": user_id,
                    "variant_id": variant.variant_id,
                    "error": e.message,
                },
            )
            return variant

        self.logger.debug(
            "Assigned experiment variant",
            extra={"user_id": user_id, "experiment": experiment_name, "variant_id": variant.variant_id},
        )
        return variant

    def assign_variant(self, user_id: str, experiment_name: str = DEFAULT_EXPERIMENT_NAME) -> str:
        """Return the user's variant id for the named experiment."""
        return self.get_variant(user_id, experiment_name).variant_id
