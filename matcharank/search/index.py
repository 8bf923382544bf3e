"""Search index over the matcha catalog.

Each catalog item becomes a `SearchIndexEntry` with denormalized searchable
text, a popularity scalar and generated tags. Entries are gathered into an
immutable `IndexSnapshot`; a rebuild produces a new snapshot that replaces
the old one in a single assignment, so readers always see one complete
snapshot.

Fuzzy matching works per token. Query tokens credit indexed tokens by exact
match, prefix, substring and, for tokens unknown to the index, character
n-gram TF-IDF similarity (typo tolerance).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

import joblib
import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from matcharank.recommender.models import CatalogItem
from matcharank.utils import normalize_text, tokenize, utc_now

# Configure module logger
logger = logging.getLogger(__name__)

FIELD_WEIGHTS: Dict[str, float] = {
    "name": 0.4,
    "description": 0.2,
    "provider": 0.2,
    "origin": 0.1,
    "searchable_text": 0.1,
}
RELEVANCE_FLOOR = 0.1
MIN_QUERY_LENGTH = 2
MIN_TOKEN_LENGTH = 2

EXACT_CREDIT = 1.0
PREFIX_CREDIT = 0.9
SUBSTRING_CREDIT = 0.8
TYPO_CREDIT_SCALE = 0.8
TYPO_MIN_COSINE = 0.6

VIEW_POPULARITY_WEIGHT = 0.1
PURCHASE_POPULARITY_WEIGHT = 1.0


def popularity(item: CatalogItem) -> float:
    return VIEW_POPULARITY_WEIGHT * item.view_count + PURCHASE_POPULARITY_WEIGHT * item.purchase_count


def price_tier(price: float) -> str:
    if price < 20:
        return "budget"
    if price < 50:
        return "mid-range"
    return "premium"


def size_tier(weight_grams: int) -> str:
    if weight_grams < 20:
        return "small"
    if weight_grams < 50:
        return "medium"
    return "large"


@dataclass(frozen=True)
class SearchIndexEntry:
    """One catalog item as seen by the search engine."""

    item: CatalogItem
    searchable_text: str
    popularity: float
    tags: Tuple[str, ...]
    field_texts: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    field_tokens: Dict[str, FrozenSet[str]] = field(default_factory=dict, hash=False, compare=False)

    @property
    def item_id(self) -> str:
        return self.item.item_id


def build_entry(item: CatalogItem) -> SearchIndexEntry:
    flavor_names = [f.value for f in item.flavors]
    searchable_text = normalize_text(
        " ".join(
            [item.name, item.description, item.provider, item.origin, item.grade.value]
            + flavor_names
            + [item.size]
        )
    )
    field_texts = {
        "name": normalize_text(item.name),
        "description": normalize_text(item.description),
        "provider": normalize_text(item.provider),
        "origin": normalize_text(item.origin),
        "searchable_text": searchable_text,
    }
    tags = (
        item.grade.value,
        *flavor_names,
        item.origin.lower(),
        price_tier(item.price),
        size_tier(item.weight_grams),
    )
    field_tokens = {name: frozenset(text.split()) for name, text in field_texts.items()}
    # Tags match as extra searchable tokens ("budget", "large", ...)
    field_tokens["searchable_text"] |= frozenset(normalize_text(" ".join(tags)).split())
    return SearchIndexEntry(
        item=item,
        searchable_text=searchable_text,
        popularity=popularity(item),
        tags=tags,
        field_texts=field_texts,
        field_tokens=field_tokens,
    )


class FuzzyMatcher:
    """Scores index entries against a normalized query.

    Args:
        vocabulary: Every distinct token appearing in any indexed field.
    """

    def __init__(self, vocabulary: Sequence[str]):
        self.vocabulary = tuple(vocabulary)
        self._known = frozenset(self.vocabulary)
        self.vectorizer: Optional[TfidfVectorizer] = None
        self.vocabulary_vectors = None

        if self.vocabulary:
            self.vectorizer = TfidfVectorizer(analyzer="char_wb", ngram_range=(2, 3), lowercase=False)
            self.vocabulary_vectors = self.vectorizer.fit_transform(self.vocabulary)

    def token_credits(self, query_token: str) -> Dict[str, float]:
        """Credit each vocabulary token earns for one query token."""
        credits: Dict[str, float] = {}
        for token in self.vocabulary:
            if token == query_token:
                credits[token] = EXACT_CREDIT
            elif token.startswith(query_token):
                credits[token] = PREFIX_CREDIT
            elif query_token in token:
                credits[token] = SUBSTRING_CREDIT

        if query_token not in self._known and self.vectorizer is not None:
            query_vector = self.vectorizer.transform([query_token])
            similarities = cosine_similarity(query_vector, self.vocabulary_vectors)[0]
            for idx in np.flatnonzero(similarities >= TYPO_MIN_COSINE):
                token = self.vocabulary[int(idx)]
                typo_credit = float(similarities[idx]) * TYPO_CREDIT_SCALE
                credits[token] = max(credits.get(token, 0.0), typo_credit)

        return credits

    def score(
        self,
        entry: SearchIndexEntry,
        query: str,
        credits: List[Dict[str, float]],
    ) -> float:
        """Weighted relevance of `entry` in [0, 1]."""
        relevance = 0.0
        for field_name, weight in FIELD_WEIGHTS.items():
            if query in entry.field_texts[field_name]:
                relevance += weight
                continue
            tokens = entry.field_tokens[field_name]
            if not tokens:
                continue
            field_score = sum(
                max((c.get(t, 0.0) for t in tokens), default=0.0) for c in credits
            ) / len(credits)
            relevance += weight * field_score
        return relevance

    def match(
        self, entries: Sequence[SearchIndexEntry], query: str
    ) -> List[Tuple[SearchIndexEntry, float]]:
        """Entries scoring at or above the relevance floor, in index order."""
        query_tokens = tokenize(query, min_length=MIN_TOKEN_LENGTH)
        if not query_tokens:
            return []

        credits = [self.token_credits(t) for t in query_tokens]
        matches = []
        for entry in entries:
            relevance = self.score(entry, query, credits)
            if relevance >= RELEVANCE_FLOOR:
                matches.append((entry, relevance))
        return matches


@dataclass(frozen=True)
class IndexSnapshot:
    """A complete, never-mutated generation of the search index."""

    entries: Tuple[SearchIndexEntry, ...]
    matcher: FuzzyMatcher = field(hash=False, compare=False)
    built_at: datetime = field(default_factory=utc_now)

    def __len__(self) -> int:
        return len(self.entries)


def build_snapshot(items: Sequence[CatalogItem]) -> IndexSnapshot:
    """Build a fresh snapshot over every catalog item, in or out of stock."""
    entries = tuple(build_entry(item) for item in items)
    vocabulary = sorted(
        {token for entry in entries for tokens in entry.field_tokens.values() for token in tokens}
    )
    snapshot = IndexSnapshot(entries=entries, matcher=FuzzyMatcher(vocabulary))
    logger.info(
        f"Built search index: {len(entries)} items, vocabulary size {len(vocabulary)}"
    )
    return snapshot


def save_snapshot(snapshot: IndexSnapshot, path: str) -> None:
    """Persist a snapshot with joblib for warm starts.

    Args:
        snapshot: Snapshot to save.
        path: Target file; parent directories are created.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(snapshot, output_path)
    logger.info(f"Saved search index snapshot to {path}")


def load_snapshot(
    path: str,
    max_age_seconds: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Optional[IndexSnapshot]:
    """Load a saved snapshot.

    Args:
        path: File written by `save_snapshot`.
        max_age_seconds: Snapshots older than this are ignored.
        now: Reference time for the age check (default: current UTC time).

    Returns:
        The snapshot, or None if it is missing, unreadable or stale.
    """
    snapshot_file = Path(path)
    if not snapshot_file.exists():
        logger.warning(f"Search index snapshot not found at {path}")
        return None

    try:
        snapshot = joblib.load(snapshot_file)
    except (OSError, EOFError, ValueError) as e:
        logger.warning(f"Failed to load search index snapshot from {path}: {e}")
        return None

    if not isinstance(snapshot, IndexSnapshot):
        logger.warning(f"Ignoring unexpected object in snapshot file {path}")
        return None

    if max_age_seconds is not None:
        age = ((now or utc_now()) - snapshot.built_at).total_seconds()
        if age > max_age_seconds:
            logger.info(f"Search index snapshot at {path} is stale ({age:.0f}s old)")
            return None

    logger.info(f"Loaded search index snapshot from {path}: {len(snapshot)} items")
    return snapshot
