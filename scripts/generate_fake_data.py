"""Generate a fake matcha catalog and interaction history.

This module creates synthetic data for developing and demoing MatchaRank:
a catalog CSV (grades, origins, providers, flavors, prices, stock) and an
interaction CSV (views, clicks, add-to-carts and purchases with timestamps).
Both files load with `matcharank.recommender.store.create_store_from_csv`.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_catalog
        catalog = generate_fake_catalog(num_items=50)
"""

import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_ITEMS = 60
DEFAULT_NUM_INTERACTIONS = 1500
DEFAULT_DAYS_BACK = 90
SECONDS_PER_DAY = 86400

GRADES = ["ceremonial", "premium", "culinary", "ingredient"]
GRADE_PRICE_RANGES = {
    "ceremonial": (28.0, 120.0),
    "premium": (20.0, 60.0),
    "culinary": (10.0, 35.0),
    "ingredient": (8.0, 25.0),
}
ORIGINS = ["Uji, Kyoto", "Nishio, Aichi", "Kagoshima", "Shizuoka", "Yame, Fukuoka"]
PROVIDERS = ["Ippodo", "Marukyu Koyamaen", "Aiya", "Matchaful", "Jade Leaf", "Encha"]
FLAVORS = ["sweet", "umami", "bitter", "grassy", "nutty", "creamy", "earthy", "floral"]
SIZES = [("20g tin", 20), ("30g tin", 30), ("40g tin", 40), ("100g bag", 100)]

# Relative frequency of each action kind
ACTION_WEIGHTS = {"view": 0.6, "click": 0.2, "add_to_cart": 0.12, "purchase": 0.08}


def generate_fake_catalog(
    num_items: int = DEFAULT_NUM_ITEMS,
    now: Optional[datetime] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate a synthetic matcha catalog.

    Args:
        num_items: Number of catalog items. Must be positive.
        now: Reference time for `created_at` (default: current UTC time).
            Roughly one item in six is created within the last 30 days.
        seed: Optional random seed for reproducible output.

    Returns:
        A pandas DataFrame with the catalog CSV columns.

    Raises:
        ValueError: If num_items is not positive.
    """
    if num_items <= 0:
        raise ValueError("num_items must be positive")

    rng = random.Random(seed)
    now = now or datetime.now(timezone.utc)

    items = []
    for n in range(1, num_items + 1):
        grade = rng.choice(GRADES)
        origin = rng.choice(ORIGINS)
        provider = rng.choice(PROVIDERS)
        flavors = rng.sample(FLAVORS, rng.randint(1, 3))
        size, weight_grams = rng.choice(SIZES)
        low, high = GRADE_PRICE_RANGES[grade]
        age_days = rng.randrange(0, 30) if rng.random() < 1 / 6 else rng.randrange(30, 720)
        town = origin.split(",")[0]

        items.append({
            "item_id": f"m{n:03d}",
            "name": f"{provider} {town} {grade.title()} Matcha",
            "grade": grade,
            "origin": origin,
            "price": round(rng.uniform(low, high), 2),
            "provider": provider,
            "description": f"{grade.title()} grade matcha from {origin} with "
                           f"{' and '.join(flavors)} notes",
            "flavors": "|".join(flavors),
            "in_stock": rng.random() > 0.1,
            "view_count": rng.randint(0, 500),
            "purchase_count": rng.randint(0, 40),
            "created_at": (now - timedelta(days=age_days)).isoformat(),
            "size": size,
            "weight_grams": weight_grams,
        })

    return pd.DataFrame(items)


def generate_fake_interactions(
    item_ids,
    num_users: int = DEFAULT_NUM_USERS,
    num_interactions: int = DEFAULT_NUM_INTERACTIONS,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate synthetic user-item interactions.

    Args:
        item_ids: Catalog item ids to draw from.
        num_users: Number of unique users to simulate. Must be positive.
        num_interactions: Total number of events to generate. Must be positive.
        start_date: Start of the timestamp range (default: 90 days before end).
        end_date: End of the timestamp range (default: now, UTC).
        seed: Optional random seed for reproducible output.

    Returns:
        A DataFrame with user_id, item_id, action and timestamp columns,
        sorted by timestamp in ascending order.

    Raises:
        ValueError: If any numeric parameter is non-positive, item_ids is
            empty, or start_date is not before end_date.
    """
    item_ids = list(item_ids)
    if num_users <= 0 or num_interactions <= 0:
        raise ValueError("num_users and num_interactions must be positive")
    if not item_ids:
        raise ValueError("item_ids must not be empty")

    if end_date is None:
        end_date = datetime.now(timezone.utc)
    if start_date is None:
        start_date = end_date - timedelta(days=DEFAULT_DAYS_BACK)
    if start_date >= end_date:
        raise ValueError("start_date must be before end_date")

    rng = random.Random(seed)
    actions = list(ACTION_WEIGHTS)
    weights = list(ACTION_WEIGHTS.values())
    days_range = max((end_date - start_date).days, 1)

    # Each user favors a slice of the catalog so neighbors emerge
    favorites = {
        user: rng.sample(item_ids, min(len(item_ids), 8))
        for user in range(1, num_users + 1)
    }

    events = []
    for _ in range(num_interactions):
        user = rng.randint(1, num_users)
        item_id = rng.choice(favorites[user]) if rng.random() < 0.7 else rng.choice(item_ids)
        timestamp = start_date + timedelta(
            days=rng.randrange(days_range), seconds=rng.randrange(SECONDS_PER_DAY)
        )
        events.append({
            "user_id": f"u{user:03d}",
            "item_id": item_id,
            "action": rng.choices(actions, weights=weights)[0],
            "timestamp": min(timestamp, end_date).isoformat(),
        })

    df = pd.DataFrame(events)
    df = df.sort_values("timestamp").reset_index(drop=True)
    return df


def main() -> None:
    """Generate default data into data/matcha_catalog.csv and data/interactions.csv."""
    print(f"Generating {DEFAULT_NUM_ITEMS} catalog items and "
          f"{DEFAULT_NUM_INTERACTIONS} interactions for {DEFAULT_NUM_USERS} users...")

    try:
        catalog = generate_fake_catalog()
        interactions = generate_fake_interactions(catalog["item_id"])
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    data_dir = Path(__file__).parent.parent / "data"
    data_dir.mkdir(exist_ok=True)

    catalog_path = data_dir / "matcha_catalog.csv"
    interactions_path = data_dir / "interactions.csv"
    catalog.to_csv(catalog_path, index=False)
    interactions.to_csv(interactions_path, index=False)

    print("\nData generated successfully!")
    print(f"Catalog saved to: {catalog_path}")
    print(f"Interactions saved to: {interactions_path}")
    print("\nData summary:")
    print(f"  Catalog items: {len(catalog)} ({int(catalog['in_stock'].sum())} in stock)")
    print(f"  Interactions: {len(interactions)}")
    print(f"  Unique users: {interactions['user_id'].nunique()}")
    print(f"  Actions: {interactions['action'].value_counts().to_dict()}")
    print(f"  Date range: {interactions['timestamp'].min()} to {interactions['timestamp'].max()}")


if __name__ == "__main__":
    main()
