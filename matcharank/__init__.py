"""MatchaRank: personalization and ranking engine for a matcha marketplace.

This package provides the recommendation generator, experiment assignment,
user profiling, similarity engines and the fuzzy search subsystem used by the
product-discovery backend.

Modules:
    api: FastAPI application exposing the engine over HTTP
    recommender: Profiles, similarity, experiments and recommendation generation
    search: In-memory search index, ranking, facets and autocomplete
"""

__version__ = "0.1.0"
