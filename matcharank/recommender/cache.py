"""Cache port and implementations.

The engine caches profiles, similarity lists, recommendation lists and search
results as plain key/value entries with a TTL. A miss only ever means
recomputation, so cache failures are downgraded to misses by `TolerantCache`.
"""

import logging
import pickle
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

from matcharank.exceptions import CacheUnavailableError

# Configure module logger
logger = logging.getLogger(__name__)


class Cache(ABC):
    """Key/value cache with per-entry TTL."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]: ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    @abstractmethod
    def delete(self, *keys: str) -> int: ...

    @abstractmethod
    def keys_matching_prefix(self, prefix: str) -> List[str]: ...

    @abstractmethod
    def ping(self) -> bool: ...

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with `prefix`.

        This scans every key, so it costs O(total keys).
        """
        keys = self.keys_matching_prefix(prefix)
        return self.delete(*keys) if keys else 0


class InMemoryCache(Cache):
    """Thread-safe process-local cache with lazy expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    def keys_matching_prefix(self, prefix: str) -> List[str]:
        now = self._clock()
        with self._lock:
            return [
                k for k, (expires_at, _) in self._entries.items()
                if k.startswith(prefix) and expires_at > now
            ]

    def ping(self) -> bool:
        return True


class RedisCache(Cache):
    """Redis-backed cache. Values are pickled so any domain object fits."""

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        namespace: str = "matcharank:",
    ):
        if client is None and url is None:
            raise ValueError("RedisCache needs either a url or a client")
        self.client = client if client is not None else redis.Redis.from_url(url)
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._key(key))
        except redis.RedisError as e:
            raise CacheUnavailableError("get", e) from e
        return pickle.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self.client.setex(self._key(key), ttl_seconds, pickle.dumps(value))
        except redis.RedisError as e:
            raise CacheUnavailableError("set", e) from e

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self.client.delete(*[self._key(k) for k in keys]))
        except redis.RedisError as e:
            raise CacheUnavailableError("delete", e) from e

    def keys_matching_prefix(self, prefix: str) -> List[str]:
        try:
            raw_keys = list(self.client.scan_iter(match=f"{self._key(prefix)}*"))
        except redis.RedisError as e:
            raise CacheUnavailableError("scan", e) from e
        keys = [k.decode("utf-8") if isinstance(k, bytes) else k for k in raw_keys]
        return [k[len(self.namespace):] for k in keys]

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            raise CacheUnavailableError("ping", e) from e


class TolerantCache(Cache):
    """Wraps a cache so backend failures behave as misses or no-ops."""

    def __init__(self, inner: Cache, log: Optional[logging.Logger] = None):
        self.inner = inner
        self.logger = log or logger

    def _degraded(self, operation: str, error: CacheUnavailableError) -> None:
        self.logger.warning(
            "Cache operation failed, continuing without cache",
            extra={"degraded": True, "operation": operation, "error": error.message},
        )

    def get(self, key: str) -> Optional[Any]:
        try:
            return self.inner.get(key)
        except CacheUnavailableError as e:
            self._degraded("get", e)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self.inner.set(key, value, ttl_seconds)
        except CacheUnavailableError as e:
            self._degraded("set", e)

    def delete(self, *keys: str) -> int:
        try:
            return self.inner.delete(*keys)
        except CacheUnavailableError as e:
            self._degraded("delete", e)
            return 0

    def keys_matching_prefix(self, prefix: str) -> List[str]:
        try:
            return self.inner.keys_matching_prefix(prefix)
        except CacheUnavailableError as e:
            self._degraded("keys", e)
            return []

    def ping(self) -> bool:
        return self.inner.ping()


def create_cache(redis_url: Optional[str] = None) -> Cache:
    """Build the configured cache backend."""
    if redis_url:
        logger.info(f"Using Redis cache at {redis_url}")
        return RedisCache(url=redis_url)
    logger.info("Using in-memory cache")
    return InMemoryCache()
