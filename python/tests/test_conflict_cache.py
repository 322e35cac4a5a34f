"""
Unit tests for the result cache, the lawyer lookup cache and the cache service

A fake clock drives TTL expiry so nothing sleeps.
"""

import threading
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import CacheConfig
from conflict_cache import CacheEntry, ConflictCacheService, LookupCache, ResultCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestResultCache:

    def test_round_trip(self, clock):
        cache = ResultCache(ttl_seconds=300, clock=clock)
        cache.put("k", "report")
        assert cache.get("k") == "report"

    def test_expires_after_ttl(self, clock):
        cache = ResultCache(ttl_seconds=300, clock=clock)
        cache.put("k", "report")

        clock.advance(300)
        assert cache.get("k") == "report"

        clock.advance(1)
        assert cache.get("k") is None
        assert len(cache) == 0
        assert cache.stats()['expirations'] == 1

    def test_missing_key(self, clock):
        cache = ResultCache(clock=clock)
        assert cache.get("nope") is None
        assert cache.stats()['misses'] == 1

    def test_evicts_oldest_fraction_by_insertion(self, clock):
        cache = ResultCache(max_size=10, eviction_fraction=0.2, clock=clock)
        for i in range(10):
            cache.put(i, f"r{i}")
            clock.advance(1)

        # reading does not refresh insertion order
        assert cache.get(0) == "r0"

        cache.put(10, "r10")

        assert len(cache) == 9
        assert cache.get(0) is None
        assert cache.get(1) is None
        assert cache.get(2) == "r2"
        assert cache.get(10) == "r10"
        assert cache.stats()['evictions'] == 2

    def test_evicts_at_least_one(self, clock):
        cache = ResultCache(max_size=3, eviction_fraction=0.1, clock=clock)
        for i in range(4):
            cache.put(i, i)
        assert len(cache) == 3
        assert 0 not in cache

    def test_reinsert_moves_to_newest(self, clock):
        cache = ResultCache(max_size=2, eviction_fraction=0.5, clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 3)
        cache.put("c", 4)
        assert cache.get("b") is None
        assert cache.get("a") == 3

    def test_corrupt_entry_is_a_miss(self, clock, caplog):
        cache = ResultCache(clock=clock)
        cache._entries["k"] = "not an entry"

        assert cache.get("k") is None
        assert "corrupt" in caplog.text
        assert len(cache) == 0

    def test_membership_does_not_touch_stats(self, clock):
        cache = ResultCache(ttl_seconds=300, clock=clock)
        cache.put("k", "report")

        assert "k" in cache
        assert "other" not in cache
        clock.advance(301)
        assert "k" not in cache

        stats = cache.stats()
        assert (stats['hits'], stats['misses'], stats['expirations']) == (0, 0, 0)

    def test_clear(self, clock):
        cache = ResultCache(clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.clear() == 2
        assert len(cache) == 0

    def test_concurrent_puts_keep_size_bounded(self):
        cache = ResultCache(max_size=50, eviction_fraction=0.1)

        def writer(offset):
            for i in range(200):
                cache.put((offset, i), i)
                cache.get((offset, i))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) <= 50
        stats = cache.stats()
        assert stats['size'] == len(cache)


class TestLookupCache:

    def test_round_trip(self, clock):
        cache = LookupCache(ttl_seconds=600, clock=clock)
        cache.put(7, "Karimov Aziz")
        assert cache.get(7) == "Karimov Aziz"

    def test_reads_honor_ttl_but_do_not_delete(self, clock):
        cache = LookupCache(ttl_seconds=600, clock=clock)
        cache.put(7, "Karimov Aziz")
        clock.advance(601)

        assert cache.get(7) is None
        assert len(cache) == 1

    def test_sweep_removes_expired(self, clock):
        cache = LookupCache(ttl_seconds=600, clock=clock)
        cache.put(1, "old")
        clock.advance(500)
        cache.put(2, "new")
        clock.advance(200)

        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get(2) == "new"

    def test_get_many_splits_found_and_missing(self, clock):
        cache = LookupCache(clock=clock)
        cache.put_many({1: "A", 2: "B"})

        found, missing = cache.get_many([1, 3, 2, 3])

        assert found == {1: "A", 2: "B"}
        assert missing == [3]

    def test_overlapping_sweep_is_skipped(self, clock):
        cache = LookupCache(clock=clock)
        cache._sweep_lock.acquire()
        try:
            assert cache.sweep() == 0
        finally:
            cache._sweep_lock.release()
        assert cache.stats()['skipped_sweeps'] == 1
        assert cache.stats()['sweeps'] == 0

    def test_background_sweep_start_stop(self):
        cache = LookupCache(ttl_seconds=600, sweep_interval_seconds=0.01)
        cache.start()
        try:
            assert cache.is_running
            cache.start()
        finally:
            cache.stop()
        assert not cache.is_running


class TestCacheEntry:

    def test_expiry_is_strictly_after_ttl(self):
        entry = CacheEntry("v", inserted_at=100.0)
        assert not entry.is_expired(400.0, 300)
        assert entry.is_expired(400.5, 300)


class TestConflictCacheService:

    def test_built_from_config(self, clock):
        config = CacheConfig(ttl_seconds=10, max_size=5, lawyer_ttl_seconds=20)
        service = ConflictCacheService(config, clock=clock)

        assert service.enabled
        assert service.results.ttl_seconds == 10
        assert service.results.max_size == 5
        assert service.lawyers.ttl_seconds == 20

    def test_clear_and_stats(self, clock):
        service = ConflictCacheService(CacheConfig(), clock=clock)
        service.results.put("k", "v")
        service.lawyers.put(1, "A")

        stats = service.stats()
        assert stats['enabled'] is True
        assert stats['results']['size'] == 1
        assert stats['lawyers']['size'] == 1

        assert service.clear() == {'results': 1, 'lawyers': 1}

    def test_context_manager_runs_sweep(self):
        with ConflictCacheService(CacheConfig(sweep_interval_seconds=0.01)) as service:
            assert service.lawyers.is_running
        assert not service.lawyers.is_running
