"""
Tests for RecommendationCache.
"""

import threading

from race_recommender.cache import CacheKeys, RecommendationCache


class FakeClock:
    """Controllable monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestGetSet:
    """Tests for basic cache operations."""

    def test_value_available_before_ttl(self):
        clock = FakeClock()
        cache = RecommendationCache(clock=clock)

        cache.set("key", {"a": 1}, ttl=60)
        clock.advance(59)

        assert cache.get("key") == {"a": 1}

    def test_value_absent_after_ttl(self):
        clock = FakeClock()
        cache = RecommendationCache(clock=clock)

        cache.set("key", "value", ttl=60)
        clock.advance(60)

        assert cache.get("key") is None
        assert cache.size == 0  # evicted on read

    def test_default_ttl_used(self):
        clock = FakeClock()
        cache = RecommendationCache(default_ttl=10, clock=clock)

        cache.set("key", "value")
        clock.advance(11)

        assert cache.get("key") is None

    def test_is_valid_does_not_count(self):
        cache = RecommendationCache()
        cache.set("key", 1)

        assert cache.is_valid("key")
        assert not cache.is_valid("other")
        assert cache.stats().total_requests == 0


class TestStats:
    """Tests for hit/miss counters."""

    def test_hits_and_misses(self):
        clock = FakeClock()
        cache = RecommendationCache(clock=clock)
        cache.set("key", 1, ttl=5)

        cache.get("key")
        cache.get("missing")
        clock.advance(10)
        cache.get("key")

        stats = cache.stats()
        assert stats.hits == 1
        assert stats.misses == 2
        assert stats.hit_rate == 1 / 3

    def test_empty_hit_rate_is_zero(self):
        assert RecommendationCache().stats().hit_rate == 0.0


class TestInvalidation:
    """Tests for delete, cleanup and clear."""

    def test_delete_leaves_other_entries(self):
        cache = RecommendationCache()
        cache.set(CacheKeys.racing_opportunities("2025-W24"), [1])
        cache.set(CacheKeys.global_stats(1, 2), "stats")

        assert cache.delete(CacheKeys.racing_opportunities("2025-W24")) is True
        assert cache.delete("never-set") is False
        assert cache.keys() == ["global_stats:1:2"]

    def test_cleanup_removes_only_expired(self):
        clock = FakeClock()
        cache = RecommendationCache(clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2, ttl=500)
        clock.advance(10)

        assert cache.cleanup() == 1
        assert cache.keys() == ["long"]

    def test_clear_resets_everything(self):
        cache = RecommendationCache()
        cache.set("key", 1)
        cache.get("key")

        cache.clear()

        assert cache.size == 0
        assert cache.stats().hits == 0


class TestKeys:
    """Tests for key builders."""

    def test_keys_are_deterministic(self):
        assert CacheKeys.racing_opportunities("2025-W24") == "racing-opportunities:2025-W24"
        assert CacheKeys.global_stats(228, 47) == "global_stats:228:47"
        assert CacheKeys.user_history("42") == CacheKeys.user_history("42")


class TestConcurrency:
    """Tests for concurrent access."""

    def test_parallel_writers_and_readers(self):
        cache = RecommendationCache()
        errors = []

        def worker(worker_id: int):
            try:
                for i in range(200):
                    key = f"{worker_id}:{i % 20}"
                    cache.set(key, i)
                    value = cache.get(key)
                    assert value is not None
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert cache.size == 8 * 20
        assert cache.stats().hits == 8 * 200
