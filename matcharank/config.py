"""Runtime configuration for MatchaRank.

Values are read from the environment (prefix ``MATCHARANK_``) or a ``.env``
file. Algorithm constants live next to the code that uses them; only
operational knobs are configured here.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MATCHARANK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "MatchaRank"
    app_env: str = "dev"
    log_level: str = "INFO"
    log_json: bool = True

    # Experiment bucketing
    experiment_salt: str = "matcharank-default-salt"
    recommendation_experiment: str = "recommendation_algorithm"

    # Optional seed data and backends
    catalog_csv: Optional[str] = None
    interactions_csv: Optional[str] = None
    redis_url: Optional[str] = None
    index_snapshot_path: Optional[str] = None

    # Cache TTLs in seconds
    profile_ttl: int = 300
    recommendation_ttl: int = 1800
    similarity_ttl: int = 3600
    search_results_ttl: int = 300
    autocomplete_ttl: int = 3600
    analytics_ttl: int = 900
    index_snapshot_ttl: int = 1800

    # Batch generation pacing
    batch_chunk_size: int = 50
    batch_pause_seconds: float = 0.1

    max_limit: int = 100


settings = Settings()
