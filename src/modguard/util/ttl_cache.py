"""
Small TTL cache for values that are expensive to fetch and may go stale,
such as chat titles.
"""

from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar
import time

from modguard.util.logger import get_logger

logger = get_logger("ttl_cache")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    Cache that forgets entries ``ttl_seconds`` after they were stored.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            ttl_seconds: Time-to-live in seconds for cached entries.
            clock: Time source, injectable for tests.
        """
        self._cache: Dict[K, Tuple[float, V]] = {}
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None if it is missing or expired."""
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at < self._ttl_seconds:
            return value
        self._cache.pop(key, None)
        logger.debug("[CACHE] Expired key: %s", key)
        return None

    def set(self, key: K, value: V) -> None:
        self._cache[key] = (self._clock(), value)

    def invalidate(self, key: K | None = None) -> int:
        """Drop one key, or everything when ``key`` is None. Returns the number of dropped entries."""
        if key is None:
            count = len(self._cache)
            self._cache.clear()
            return count
        return 1 if self._cache.pop(key, None) is not None else 0

    def __len__(self) -> int:
        return len(self._cache)
