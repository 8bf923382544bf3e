"""CLI for trying out recommendations and search.

Loads a catalog and interaction history from CSV into an in-memory store
and prints recommendations for a user, similar items for a product, or
search results for a query.
"""

import argparse
import logging
import sys

from matcharank.config import Settings
from matcharank.exceptions import MatchaRankError
from matcharank.recommender.cache import InMemoryCache
from matcharank.recommender.engine import RecommendationEngine
from matcharank.recommender.store import create_store_from_csv
from matcharank.search.service import SearchService

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)

DEFAULT_CATALOG = "data/matcha_catalog.csv"
DEFAULT_INTERACTIONS = "data/interactions.csv"


def print_recommendations(engine: RecommendationEngine, user_id: str, limit: int, explain: bool) -> None:
    recommendations = engine.generate_recommendations(user_id, limit)
    algorithm = recommendations[0].algorithm.value if recommendations else "none"
    variant = recommendations[0].variant_id if recommendations else "none"

    print(f"\nRecommendations for user {user_id} (algorithm: {algorithm}, variant: {variant}):")
    for rank, rec in enumerate(recommendations, start=1):
        item = engine.store.get_item(rec.item_id)
        name = item.name if item else rec.item_id
        print(f"  {rank:2d}. {name} [{rec.item_id}] score={rec.score:.3f}")
        if explain:
            print(f"      {rec.reason.kind.value}: {rec.reason.explanation}")


def print_similar(engine: RecommendationEngine, item_id: str, limit: int) -> None:
    items = engine.get_similar_items(item_id, limit)
    print(f"\nItems similar to {item_id}:")
    for item in items:
        print(f"  - {item.name} [{item.item_id}] {item.grade.value}, {item.origin}, ${item.price:.2f}")


def print_search(search: SearchService, query: str, limit: int) -> None:
    response = search.search(query, limit=limit)
    print(f"\nSearch results for '{query}' ({response.total} total):")
    for item in response.results:
        print(f"  - {item.name} [{item.item_id}] {item.provider}, ${item.price:.2f}")


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Get matcha recommendations, similar items or search results",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/recommend_cli.py recommend u001
  python scripts/recommend_cli.py recommend u001 --limit 5 --explain
  python scripts/recommend_cli.py similar m007
  python scripts/recommend_cli.py search "ceremonial uji"
        """
    )
    parser.add_argument("command", choices=["recommend", "similar", "search"])
    parser.add_argument("target", help="User id, item id or search query")
    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of results to return (default: 10)"
    )
    parser.add_argument("--catalog", default=DEFAULT_CATALOG, help="Catalog CSV path")
    parser.add_argument("--interactions", default=DEFAULT_INTERACTIONS, help="Interactions CSV path")
    parser.add_argument(
        "--explain",
        action="store_true",
        help="Show the reason behind each recommendation"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        store = create_store_from_csv(args.catalog, args.interactions)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        print("  Run scripts/generate_fake_data.py to create sample data.", file=sys.stderr)
        sys.exit(1)

    cli_settings = Settings(batch_pause_seconds=0.0)
    cache = InMemoryCache()

    try:
        if args.command == "recommend":
            engine = RecommendationEngine(store, cache, settings=cli_settings)
            print_recommendations(engine, args.target, args.limit, args.explain)
        elif args.command == "similar":
            engine = RecommendationEngine(store, cache, settings=cli_settings)
            print_similar(engine, args.target, args.limit)
        else:
            search = SearchService(store, cache, settings=cli_settings)
            print_search(search, args.target, args.limit)
    except MatchaRankError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    print()


if __name__ == "__main__":
    main()
