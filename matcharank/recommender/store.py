"""Data store port and the in-memory implementation.

The relational catalog/account store is an external collaborator. The engine
talks to it only through `DataStore`; `InMemoryStore` backs tests, the CLI
and the default application, and can be seeded from CSV files.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from matcharank.exceptions import RecommendationNotFoundError
from matcharank.recommender.models import (
    ActionKind,
    AnalyticsEvent,
    CatalogItem,
    Experiment,
    ExperimentAssignment,
    Flavor,
    Grade,
    InteractionEvent,
    Recommendation,
    SearchQueryRecord,
)

# Configure module logger
logger = logging.getLogger(__name__)

CATALOG_REQUIRED_COLUMNS = {"item_id", "name", "grade", "origin", "price"}
INTERACTION_REQUIRED_COLUMNS = {"user_id", "item_id", "action", "timestamp"}
FLAVOR_SEPARATOR = "|"
CATALOG_DEFAULTS = {
    "provider": "",
    "description": "",
    "flavors": "",
    "in_stock": True,
    "view_count": 0,
    "purchase_count": 0,
    "size": "",
    "weight_grams": 30,
}


class DataStore(ABC):
    """Operations the engine needs from the persistent store.

    Implementations raise `StoreUnavailableError` for transient failures.
    """

    # Catalog
    @abstractmethod
    def get_item(self, item_id: str) -> Optional[CatalogItem]: ...

    @abstractmethod
    def get_items_by_ids(self, item_ids: Iterable[str]) -> List[CatalogItem]:
        """Return the known items among `item_ids`; unknown ids are skipped."""

    @abstractmethod
    def list_items(self, in_stock_only: bool = False) -> List[CatalogItem]: ...

    @abstractmethod
    def list_items_created_since(self, since: datetime) -> List[CatalogItem]: ...

    # Interactions
    @abstractmethod
    def get_user_interactions(
        self, user_id: str, limit: Optional[int] = None
    ) -> List[InteractionEvent]:
        """Return a user's events, newest first."""

    @abstractmethod
    def get_interactions_since(self, since: datetime) -> List[InteractionEvent]: ...

    @abstractmethod
    def list_interactions(self) -> List[InteractionEvent]: ...

    @abstractmethod
    def add_interaction(self, event: InteractionEvent) -> None: ...

    @abstractmethod
    def delete_interactions_before(self, cutoff: datetime) -> int: ...

    # Experiments
    @abstractmethod
    def get_active_experiment(self, name: str) -> Optional[Experiment]: ...

    @abstractmethod
    def create_experiment(self, experiment: Experiment) -> None: ...

    @abstractmethod
    def get_assignment(
        self, user_id: str, experiment_id: str
    ) -> Optional[ExperimentAssignment]: ...

    @abstractmethod
    def save_assignment(self, assignment: ExperimentAssignment) -> None: ...

    # Recommendations
    @abstractmethod
    def insert_recommendation(self, recommendation: Recommendation) -> None: ...

    @abstractmethod
    def get_recommendation(self, recommendation_id: str) -> Optional[Recommendation]: ...

    @abstractmethod
    def update_recommendation(
        self,
        recommendation_id: str,
        clicked_at: Optional[datetime] = None,
        purchased_at: Optional[datetime] = None,
    ) -> Recommendation: ...

    @abstractmethod
    def list_recommendations_since(self, since: datetime) -> List[Recommendation]: ...

    @abstractmethod
    def delete_recommendations_before(self, cutoff: datetime) -> int: ...

    # Search analytics
    @abstractmethod
    def insert_search_query(self, record: SearchQueryRecord) -> None: ...

    @abstractmethod
    def increment_search_ctr(self, search_id: str, amount: float) -> None: ...

    @abstractmethod
    def list_search_queries_since(
        self, since: datetime, user_id: Optional[str] = None
    ) -> List[SearchQueryRecord]: ...

    @abstractmethod
    def delete_search_queries_before(self, cutoff: datetime) -> int: ...

    @abstractmethod
    def insert_analytics_event(self, event: AnalyticsEvent) -> None: ...

    @abstractmethod
    def ping(self) -> bool: ...


class InMemoryStore(DataStore):
    """Thread-safe, process-local `DataStore`."""

    def __init__(
        self,
        items: Optional[Iterable[CatalogItem]] = None,
        interactions: Optional[Iterable[InteractionEvent]] = None,
    ):
        self._lock = threading.RLock()
        self._items: Dict[str, CatalogItem] = {}
        self._interactions: List[InteractionEvent] = []
        self._experiments: Dict[str, Experiment] = {}
        self._assignments: Dict[Tuple[str, str], ExperimentAssignment] = {}
        self._recommendations: Dict[str, Recommendation] = {}
        self._search_queries: Dict[str, SearchQueryRecord] = {}
        self.analytics_events: List[AnalyticsEvent] = []

        for item in items or []:
            self.upsert_item(item)
        for event in interactions or []:
            self.add_interaction(event)

    def upsert_item(self, item: CatalogItem) -> None:
        """Insert or replace a catalog item (ingestion side)."""
        with self._lock:
            self._items[item.item_id] = item

    # Catalog

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        with self._lock:
            return self._items.get(item_id)

    def get_items_by_ids(self, item_ids: Iterable[str]) -> List[CatalogItem]:
        with self._lock:
            return [self._items[i] for i in item_ids if i in self._items]

    def list_items(self, in_stock_only: bool = False) -> List[CatalogItem]:
        with self._lock:
            return [i for i in self._items.values() if i.in_stock or not in_stock_only]

    def list_items_created_since(self, since: datetime) -> List[CatalogItem]:
        with self._lock:
            return [
                i for i in self._items.values()
                if i.created_at is not None and i.created_at >= since
            ]

    # Interactions

    def get_user_interactions(
        self, user_id: str, limit: Optional[int] = None
    ) -> List[InteractionEvent]:
        with self._lock:
            events = [e for e in self._interactions if e.user_id == user_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit] if limit is not None else events

    def get_interactions_since(self, since: datetime) -> List[InteractionEvent]:
        with self._lock:
            return [e for e in self._interactions if e.timestamp >= since]

    def list_interactions(self) -> List[InteractionEvent]:
        with self._lock:
            return list(self._interactions)

    def add_interaction(self, event: InteractionEvent) -> None:
        with self._lock:
            self._interactions.append(event)

    def delete_interactions_before(self, cutoff: datetime) -> int:
        with self._lock:
            before = len(self._interactions)
            self._interactions = [e for e in self._interactions if e.timestamp >= cutoff]
            return before - len(self._interactions)

    # Experiments

    def get_active_experiment(self, name: str) -> Optional[Experiment]:
        with self._lock:
            for experiment in self._experiments.values():
                if experiment.name == name and experiment.is_active:
                    return experiment
        return None

    def create_experiment(self, experiment: Experiment) -> None:
        with self._lock:
            self._experiments[experiment.experiment_id] = experiment

    def get_assignment(
        self, user_id: str, experiment_id: str
    ) -> Optional[ExperimentAssignment]:
        with self._lock:
            return self._assignments.get((user_id, experiment_id))

    def save_assignment(self, assignment: ExperimentAssignment) -> None:
        key = (assignment.user_id, assignment.experiment_id)
        with self._lock:
            # First write wins; assignments are immutable
            self._assignments.setdefault(key, assignment)

    # Recommendations

    def insert_recommendation(self, recommendation: Recommendation) -> None:
        with self._lock:
            self._recommendations[recommendation.recommendation_id] = recommendation

    def get_recommendation(self, recommendation_id: str) -> Optional[Recommendation]:
        with self._lock:
            return self._recommendations.get(recommendation_id)

    def update_recommendation(
        self,
        recommendation_id: str,
        clicked_at: Optional[datetime] = None,
        purchased_at: Optional[datetime] = None,
    ) -> Recommendation:
        with self._lock:
            current = self._recommendations.get(recommendation_id)
            if current is None:
                raise RecommendationNotFoundError(recommendation_id)
            updated = replace(
                current,
                clicked_at=current.clicked_at or clicked_at,
                purchased_at=current.purchased_at or purchased_at,
            )
            self._recommendations[recommendation_id] = updated
            return updated

    def list_recommendations_since(self, since: datetime) -> List[Recommendation]:
        with self._lock:
            return [r for r in self._recommendations.values() if r.created_at >= since]

    def delete_recommendations_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [k for k, r in self._recommendations.items() if r.created_at < cutoff]
            for key in stale:
                del self._recommendations[key]
            return len(stale)

    # Search analytics

    def insert_search_query(self, record: SearchQueryRecord) -> None:
        with self._lock:
            self._search_queries[record.search_id] = record

    def increment_search_ctr(self, search_id: str, amount: float) -> None:
        with self._lock:
            record = self._search_queries.get(search_id)
            if record is not None:
                record.click_through_rate += amount

    def list_search_queries_since(
        self, since: datetime, user_id: Optional[str] = None
    ) -> List[SearchQueryRecord]:
        with self._lock:
            return [
                q for q in self._search_queries.values()
                if q.created_at >= since and (user_id is None or q.user_id == user_id)
            ]

    def delete_search_queries_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [k for k, q in self._search_queries.items() if q.created_at < cutoff]
            for key in stale:
                del self._search_queries[key]
            return len(stale)

    def insert_analytics_event(self, event: AnalyticsEvent) -> None:
        with self._lock:
            self.analytics_events.append(event)

    def ping(self) -> bool:
        return True


def _parse_flavors(raw) -> Tuple[Flavor, ...]:
    if not isinstance(raw, str) or not raw.strip():
        return ()
    flavors = []
    for part in raw.split(FLAVOR_SEPARATOR):
        part = part.strip().lower()
        if part in Flavor._value2member_map_:
            flavors.append(Flavor(part))
        elif part:
            logger.debug(f"Ignoring unknown flavor tag '{part}'")
    return tuple(flavors)


def _read_csv(csv_path: str, required_columns: set) -> pd.DataFrame:
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading CSV from {csv_path}")
    df = pd.read_csv(csv_path)

    if not required_columns.issubset(df.columns):
        missing = required_columns - set(df.columns)
        raise ValueError(f"CSV missing required columns: {missing}")

    return df


def load_catalog_csv(csv_path: str) -> List[CatalogItem]:
    """Load catalog items from CSV.

    Required columns are item_id, name, grade, origin and price. Optional
    columns: provider, description, flavors (``|``-separated), in_stock,
    view_count, purchase_count, created_at, size, weight_grams.

    Raises:
        FileNotFoundError: If CSV file does not exist.
        ValueError: If CSV is missing required columns.
    """
    df = _read_csv(csv_path, CATALOG_REQUIRED_COLUMNS)
    df = df.fillna(CATALOG_DEFAULTS)
    if "created_at" in df.columns:
        df["created_at"] = pd.to_datetime(df["created_at"], utc=True)

    items = []
    for row in df.to_dict(orient="records"):
        created_at = row.get("created_at")
        items.append(
            CatalogItem(
                item_id=str(row["item_id"]),
                name=str(row["name"]),
                grade=Grade(str(row["grade"]).lower()),
                origin=str(row["origin"]),
                price=float(row["price"]),
                provider=str(row.get("provider") or ""),
                description=str(row.get("description") or ""),
                flavors=_parse_flavors(row.get("flavors")),
                in_stock=bool(row.get("in_stock", True)),
                view_count=int(row.get("view_count", 0) or 0),
                purchase_count=int(row.get("purchase_count", 0) or 0),
                created_at=created_at.to_pydatetime() if pd.notna(created_at) else None,
                size=str(row.get("size") or ""),
                weight_grams=int(row.get("weight_grams", 30) or 30),
            )
        )

    logger.info(f"Loaded {len(items)} catalog items")
    return items


def load_interactions_csv(csv_path: str) -> List[InteractionEvent]:
    """Load interaction events (user_id, item_id, action, timestamp) from CSV.

    Raises:
        FileNotFoundError: If CSV file does not exist.
        ValueError: If CSV is missing required columns or has unknown actions.
    """
    df = _read_csv(csv_path, INTERACTION_REQUIRED_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)

    unknown = set(df["action"].unique()) - set(ActionKind._value2member_map_)
    if unknown:
        raise ValueError(f"CSV contains unknown actions: {unknown}")

    events = [
        InteractionEvent(
            user_id=str(row["user_id"]),
            item_id=str(row["item_id"]),
            action=ActionKind(row["action"]),
            timestamp=row["timestamp"].to_pydatetime(),
        )
        for row in df.to_dict(orient="records")
    ]

    logger.info(f"Loaded {len(events)} interaction records")
    logger.info(f"Unique users: {df['user_id'].nunique()}")
    return events


def create_store_from_csv(
    catalog_csv: Optional[str] = None,
    interactions_csv: Optional[str] = None,
) -> InMemoryStore:
    """Build an `InMemoryStore` seeded from optional CSV files."""
    items = load_catalog_csv(catalog_csv) if catalog_csv else []
    events = load_interactions_csv(interactions_csv) if interactions_csv else []
    return InMemoryStore(items=items, interactions=events)
