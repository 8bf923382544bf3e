"""Interaction store adapter.

Reads historical user/item interaction events from the data store, retrying
each read once, and builds the sparse user-item matrix the collaborative
similarity engine works on.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

import numpy as np
from scipy.sparse import csr_matrix

from matcharank.recommender.models import InteractionEvent
from matcharank.recommender.store import DataStore
from matcharank.utils import retry_read, utc_now

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_RECENT_EVENTS = 100


@dataclass
class UserItemMatrix:
    """Binary user x item interaction matrix with its id mappings.

    Columns of `matrix` double as the item -> users inverted index.
    """

    matrix: csr_matrix
    user_id_to_idx: Dict[str, int]
    item_id_to_idx: Dict[str, int]

    @property
    def idx_to_user_id(self) -> Dict[int, str]:
        return {idx: uid for uid, idx in self.user_id_to_idx.items()}


class InteractionReader:
    """Read-side adapter over the interaction tables of a `DataStore`."""

    def __init__(self, store: DataStore, log: Optional[logging.Logger] = None):
        self.store = store
        self.logger = log or logger

    def recent_events(
        self, user_id: str, limit: int = DEFAULT_RECENT_EVENTS
    ) -> List[InteractionEvent]:
        """Most recent events for a user, newest first."""
        return retry_read(
            lambda: self.store.get_user_interactions(user_id, limit=limit),
            "get_user_interactions",
            log=self.logger,
        )

    def all_events(self, user_id: str) -> List[InteractionEvent]:
        return retry_read(
            lambda: self.store.get_user_interactions(user_id),
            "get_user_interactions",
            log=self.logger,
        )

    def touched_items(self, user_id: str) -> Set[str]:
        return {e.item_id for e in self.all_events(user_id)}

    def events_within(self, days: int, now: Optional[datetime] = None) -> List[InteractionEvent]:
        since = (now or utc_now()) - timedelta(days=days)
        return retry_read(
            lambda: self.store.get_interactions_since(since),
            "get_interactions_since",
            log=self.logger,
        )

    def build_user_item_matrix(self) -> UserItemMatrix:
        """Build the binary user-item matrix over every stored interaction.

        Duplicate (user, item) pairs collapse to a single 1.
        """
        events = retry_read(
            self.store.list_interactions, "list_interactions", log=self.logger
        )

        unique_users = sorted({e.user_id for e in events})
        unique_items = sorted({e.item_id for e in events})
        user_id_to_idx = {uid: idx for idx, uid in enumerate(unique_users)}
        item_id_to_idx = {iid: idx for idx, iid in enumerate(unique_items)}

        pairs = {(user_id_to_idx[e.user_id], item_id_to_idx[e.item_id]) for e in events}
        rows = np.fromiter((p[0] for p in pairs), dtype=np.int64, count=len(pairs))
        cols = np.fromiter((p[1] for p in pairs), dtype=np.int64, count=len(pairs))
        data = np.ones(len(pairs), dtype=np.float32)

        matrix = csr_matrix(
            (data, (rows, cols)),
            shape=(len(unique_users), len(unique_items)),
            dtype=np.float32,
        )

        self.logger.debug(
            "Built user-item matrix",
            extra={
                "num_users": len(unique_users),
                "num_items": len(unique_items),
                "nnz": int(matrix.nnz),
            },
        )
        return UserItemMatrix(matrix, user_id_to_idx, item_id_to_idx)
