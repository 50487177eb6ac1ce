# lazy ttl cache for slow-changing lookups (merchant averages)
# if cached (and not expired) → instant return
# if not cached or expired → caller computes, stores, returns

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

class TTLCache:
    """
    time-to-live cache - items expire after a set time
    thread-safe, counts hits and misses for monitoring
    """

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], float] = time.monotonic):
        """
        args:
            ttl_seconds: how long items stay valid (default 10 minutes)
            clock: seconds source, swap in a fake one for tests
        """
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """value if present and fresh, None otherwise (expired entries are dropped)"""
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                value, expiry = entry
                if self._clock() < expiry:
                    self.hits += 1
                    return value
                del self._cache[key]
            self.misses += 1
        return None

    def set(self, key: str, value: Any):
        with self._lock:
            self._cache[key] = (value, self._clock() + self._ttl)

    def invalidate(self, key: str):
        """drop one key (no-op when missing)"""
        with self._lock:
            self._cache.pop(key, None)

    def clear(self):
        """clear entire cache and counters (useful for testing)"""
        with self._lock:
            self._cache.clear()
            self.hits = 0
            self.misses = 0

    def size(self) -> int:
        with self._lock:
            return len(self._cache)

    def hit_rate(self) -> float:
        """hit rate as percentage (0-100) since the last clear"""
        with self._lock:
            total = self.hits + self.misses
            if total == 0:
                return 0.0
            return (self.hits / total) * 100
