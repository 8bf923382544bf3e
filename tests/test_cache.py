"""Tests for the cache implementations."""

import logging

import pytest
import redis

from matcharank.exceptions import CacheUnavailableError
from matcharank.recommender.cache import (
    InMemoryCache,
    RedisCache,
    TolerantCache,
    create_cache,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class BrokenRedis:
    """A redis client whose every call fails as if the server were down."""

    def _fail(self, *args, **kwargs):
        raise redis.ConnectionError("connection refused")

    get = setex = delete = scan_iter = ping = _fail


def test_in_memory_cache_expires_entries():
    """Test that entries disappear once their TTL has passed."""
    clock = FakeClock()
    cache = InMemoryCache(clock=clock)
    cache.set("user_profile:alice", {"grades": ["ceremonial"]}, ttl_seconds=300)

    clock.now += 299
    assert cache.get("user_profile:alice") == {"grades": ["ceremonial"]}

    clock.now += 2
    assert cache.get("user_profile:alice") is None


def test_delete_prefix_only_touches_matching_keys():
    cache = InMemoryCache()
    cache.set("recommendations:u1:10", [1], 60)
    cache.set("recommendations:u1:5", [2], 60)
    cache.set("recommendations:u10:10", [3], 60)
    cache.set("user_profile:u1", {}, 60)

    assert cache.delete_prefix("recommendations:u1:") == 2
    assert cache.get("recommendations:u10:10") == [3]
    assert cache.get("user_profile:u1") == {}


def test_redis_cache_wraps_errors():
    """Test that redis failures surface as CacheUnavailableError."""
    cache = RedisCache(client=BrokenRedis())

    with pytest.raises(CacheUnavailableError):
        cache.get("key")
    with pytest.raises(CacheUnavailableError):
        cache.set("key", "value", 60)
    with pytest.raises(CacheUnavailableError):
        cache.keys_matching_prefix("search:")


def test_redis_cache_requires_url_or_client():
    with pytest.raises(ValueError):
        RedisCache()


def test_tolerant_cache_degrades_to_misses(caplog):
    """Test that a failing backend behaves as an empty cache."""
    cache = TolerantCache(RedisCache(client=BrokenRedis()))

    with caplog.at_level(logging.WARNING):
        assert cache.get("key") is None
        cache.set("key", "value", 60)
        assert cache.delete("key") == 0
        assert cache.delete_prefix("search:") == 0

    assert any(getattr(r, "degraded", False) for r in caplog.records)


def test_create_cache_defaults_to_memory():
    assert isinstance(create_cache(None), InMemoryCache)
