"""
Expiring object cache.

Thread-safe key/value store where every entry has a deadline. A background
sweeper removes expired entries and reports each removed key to the eviction
callback, which the fencer uses to re-evaluate nodes periodically.

Entries that have expired but not yet been swept are invisible to ``get``.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


def object_key(name: str, namespace: str = "") -> str:
    """Cache key for an object: 'namespace/name', or '/name' when cluster-scoped."""
    return f"{namespace}/{name}"


def split_key(key: str) -> Tuple[str, str]:
    """Inverse of object_key. Returns (namespace, name)."""
    namespace, _, name = key.rpartition("/")
    return namespace, name


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class ExpiringCache:
    """
    Key/value cache with per-entry expiry and an eviction callback.

    Runs its sweeper in a daemon thread between ``start()`` and ``stop()``.
    """

    def __init__(
        self,
        default_ttl: float,
        cleanup_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            default_ttl: Seconds an entry lives after its last put
            cleanup_interval: Seconds between sweeps (default 5x TTL)
            clock: Monotonic time source
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval if cleanup_interval else 5 * default_ttl
        self._clock = clock

        self._lock = threading.Lock()
        self._items: Dict[str, CacheEntry] = {}
        self._on_evicted: Optional[Callable[[str], None]] = None

        self._stop = threading.Event()
        self.sweeper_thread: Optional[threading.Thread] = None

    def on_evicted(self, callback: Optional[Callable[[str], None]]) -> None:
        """Register the function called with each key removed by expiry."""
        with self._lock:
            self._on_evicted = callback

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Insert or overwrite ``key``, resetting its deadline."""
        now = self._clock()
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(value=value, inserted_at=now, expires_at=now + ttl)
        with self._lock:
            self._items[key] = entry

    def get(self, key: str) -> Tuple[Any, bool]:
        with self._lock:
            entry = self._items.get(key)
        if entry is None or entry.expired(self._clock()):
            return None, False
        return entry.value, True

    def delete(self, key: str) -> None:
        """Remove ``key`` without firing the eviction callback."""
        with self._lock:
            self._items.pop(key, None)

    def cache_miss(self, key: str, value: Any) -> bool:
        """
        Return False if an equal value is already cached for ``key``.

        Otherwise store ``value`` and return True. Sync loops use this to skip
        objects that haven't changed since they were last applied.
        """
        cached, found = self.get(key)
        if found and cached == value:
            logger.debug(f"cache hit: {key}")
            return False
        self.put(key, value)
        logger.debug(f"cache miss: {key}")
        return True

    def keys(self) -> List[str]:
        now = self._clock()
        with self._lock:
            return [k for k, e in self._items.items() if not e.expired(now)]

    def items(self) -> List[Tuple[str, Any]]:
        now = self._clock()
        with self._lock:
            return [(k, e.value) for k, e in self._items.items() if not e.expired(now)]

    def __len__(self) -> int:
        return len(self.keys())

    def delete_expired(self) -> List[str]:
        """
        Remove all expired entries and notify the eviction callback.

        The lock is taken once to find candidates and then once per removal,
        so readers are never held up for the whole sweep. An entry refreshed
        between the two steps is left alone.
        """
        now = self._clock()
        with self._lock:
            candidates = [k for k, e in self._items.items() if e.expired(now)]
            callback = self._on_evicted

        evicted = []
        for key in candidates:
            with self._lock:
                entry = self._items.get(key)
                if entry is None or not entry.expired(now):
                    continue
                del self._items[key]
            evicted.append(key)

            if callback is None:
                continue
            try:
                callback(key)
            except Exception as e:
                logger.error(f"Eviction callback failed for {key}: {e}", exc_info=True)

        if evicted:
            logger.debug(f"Expired {len(evicted)} cache entries")
        return evicted

    def start(self) -> None:
        """Start the sweeper thread"""
        if self.sweeper_thread and self.sweeper_thread.is_alive():
            logger.warning("Cache sweeper already running")
            return
        self._stop.clear()
        self.sweeper_thread = threading.Thread(target=self._sweep_loop, name="cache-sweeper", daemon=True)
        self.sweeper_thread.start()

    def stop(self) -> None:
        """Stop the sweeper thread"""
        self._stop.set()
        if self.sweeper_thread and self.sweeper_thread.is_alive():
            self.sweeper_thread.join(timeout=5)

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.cleanup_interval):
            try:
                self.delete_expired()
            except Exception as e:
                logger.error(f"Cache sweep error: {e}", exc_info=True)
