"""
In-process caches for conflict checks

ResultCache memoizes conflict reports by fingerprint (TTL and size bound).
LookupCache memoizes lawyer display names and is cleaned by a background
sweep. Both are safe for concurrent use.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Hashable, Iterable, List, Mapping, Optional, Tuple, TypeVar

from config_manager import CacheConfig

logger = logging.getLogger(__name__)

T = TypeVar('T')

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    value: T
    inserted_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.inserted_at > ttl


class ResultCache(Generic[T]):
    """TTL cache with insertion-order eviction

    When the entry count exceeds max_size the oldest fraction of entries
    (by insertion time, not by last access) is evicted.
    """

    def __init__(self, ttl_seconds: float = 300.0, max_size: int = 1000,
                 eviction_fraction: float = 0.1, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.eviction_fraction = eviction_fraction
        self._clock = clock
        self._entries: 'OrderedDict[Hashable, CacheEntry[T]]' = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0

    def get(self, key: Hashable) -> Optional[T]:
        """Return the cached value, or None when absent or expired"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if not isinstance(entry, CacheEntry):
                logger.error("Discarding corrupt result cache entry for key %s", key)
                del self._entries[key]
                self.misses += 1
                return None
            if entry.is_expired(self._clock(), self.ttl_seconds):
                del self._entries[key]
                self.expirations += 1
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def put(self, key: Hashable, value: T) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(value, self._clock())
            if len(self._entries) > self.max_size:
                self._evict_oldest()

    def _evict_oldest(self) -> None:
        count = max(1, int(self.max_size * self.eviction_fraction))
        count = min(count, len(self._entries))
        for _ in range(count):
            self._entries.popitem(last=False)
        self.evictions += count
        logger.debug("Evicted %d oldest result cache entries", count)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        # membership does not count as a hit or miss
        with self._lock:
            entry = self._entries.get(key)
            return isinstance(entry, CacheEntry) and not entry.is_expired(self._clock(), self.ttl_seconds)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'size': len(self._entries),
                'max_size': self.max_size,
                'ttl_seconds': self.ttl_seconds,
                'hits': self.hits,
                'misses': self.misses,
                'evictions': self.evictions,
                'expirations': self.expirations,
            }


class LookupCache(Generic[T]):
    """Key/value cache cleaned by a periodic background sweep

    Reads honor the TTL but never delete; only sweep() removes entries.
    A sweep that finds another sweep in progress skips instead of waiting.
    """

    def __init__(self, ttl_seconds: float = 600.0, sweep_interval_seconds: float = 60.0,
                 clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[T]] = {}
        self._lock = threading.RLock()
        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.sweeps = 0
        self.skipped_sweeps = 0

    def get(self, key: Hashable) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock(), self.ttl_seconds):
                return None
            return entry.value

    def get_many(self, keys: Iterable[Hashable]) -> Tuple[Dict[Hashable, T], List[Hashable]]:
        """Split keys into (cached values, keys still to be fetched)"""
        found: Dict[Hashable, T] = {}
        missing: List[Hashable] = []
        with self._lock:
            now = self._clock()
            for key in dict.fromkeys(keys):
                entry = self._entries.get(key)
                if entry is None or entry.is_expired(now, self.ttl_seconds):
                    missing.append(key)
                else:
                    found[key] = entry.value
        return found, missing

    def put(self, key: Hashable, value: T) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock())

    def put_many(self, values: Mapping[Hashable, T]) -> None:
        with self._lock:
            now = self._clock()
            for key, value in values.items():
                self._entries[key] = CacheEntry(value, now)

    def sweep(self) -> int:
        """Remove expired entries; returns how many were removed"""
        if not self._sweep_lock.acquire(blocking=False):
            self.skipped_sweeps += 1
            logger.debug("Lookup cache sweep already running, skipping")
            return 0
        try:
            with self._lock:
                now = self._clock()
                expired = [k for k, e in self._entries.items() if e.is_expired(now, self.ttl_seconds)]
                for key in expired:
                    del self._entries[key]
            self.sweeps += 1
            if expired:
                logger.debug("Lookup cache sweep removed %d entries", len(expired))
            return len(expired)
        finally:
            self._sweep_lock.release()

    def _run(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Lookup cache sweep failed")

    def start(self) -> None:
        """Start the background sweep thread (no-op when already running)"""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='lookup-cache-sweep', daemon=True)
        self._thread.start()
        logger.info("Lookup cache sweep started (interval %.0fs)", self.sweep_interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Lookup cache sweep stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'size': len(self._entries),
                'ttl_seconds': self.ttl_seconds,
                'sweep_interval_seconds': self.sweep_interval_seconds,
                'sweeps': self.sweeps,
                'skipped_sweeps': self.skipped_sweeps,
                'running': self.is_running,
            }


class ConflictCacheService:
    """Owns the result cache and the lawyer-name cache for one process"""

    def __init__(self, config: Optional[CacheConfig] = None, clock: Clock = time.monotonic):
        self.config = config or CacheConfig()
        self.enabled = self.config.enabled
        self.results: ResultCache = ResultCache(
            ttl_seconds=self.config.ttl_seconds,
            max_size=self.config.max_size,
            eviction_fraction=self.config.eviction_fraction,
            clock=clock
        )
        self.lawyers: LookupCache = LookupCache(
            ttl_seconds=self.config.lawyer_ttl_seconds,
            sweep_interval_seconds=self.config.sweep_interval_seconds,
            clock=clock
        )

    def start(self) -> None:
        self.lawyers.start()

    def stop(self) -> None:
        self.lawyers.stop()

    def __enter__(self) -> 'ConflictCacheService':
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def clear(self) -> Dict[str, int]:
        return {'results': self.results.clear(), 'lawyers': self.lawyers.clear()}

    def stats(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'results': self.results.stats(),
            'lawyers': self.lawyers.stats(),
        }
