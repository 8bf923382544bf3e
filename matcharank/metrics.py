"""Metrics service for tracking engine performance.

Thread-safe counters for generation latency and cache effectiveness. Each
service owns its own instance so tests and multiple apps do not share state.
"""

import threading
from typing import Dict


class MetricsService:
    """Thread-safe latency and cache-hit tracking."""

    def __init__(self):
        """Initialize metrics counters."""
        self._lock = threading.Lock()
        self.reset()

    def record_latency(self, latency_ms: float) -> None:
        """Record one timed operation.

        Args:
            latency_ms: Latency in milliseconds
        """
        with self._lock:
            self._call_count += 1
            self._total_latency_ms += latency_ms

            if latency_ms < self._min_latency_ms:
                self._min_latency_ms = latency_ms

            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms

    def record_cache_hit(self) -> None:
        with self._lock:
            self._cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self._cache_misses += 1

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - call_count: Number of timed operations
            - average_latency_ms: Average latency in milliseconds
            - min_latency_ms: Minimum latency observed
            - max_latency_ms: Maximum latency observed
            - cache_hit_rate: Share of lookups served from cache
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._call_count
                if self._call_count > 0
                else 0.0
            )
            lookups = self._cache_hits + self._cache_misses

            return {
                "call_count": self._call_count,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": (
                    round(self._min_latency_ms, 2)
                    if self._min_latency_ms != float("inf")
                    else 0.0
                ),
                "max_latency_ms": round(self._max_latency_ms, 2),
                "cache_hits": self._cache_hits,
                "cache_misses": self._cache_misses,
                "cache_hit_rate": round(self._cache_hits / lookups, 4) if lookups else 0.0,
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._call_count = 0
            self._total_latency_ms = 0.0
            self._min_latency_ms = float("inf")
            self._max_latency_ms = 0.0
            self._cache_hits = 0
            self._cache_misses = 0
