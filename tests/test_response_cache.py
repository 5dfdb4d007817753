"""Tests for the bounded FIFO response cache."""

import pytest

from courseforge.services.response_cache import ResponseCache


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestExpiry:

    def test_entry_valid_until_ttl(self):
        clock = FakeClock()
        cache = ResponseCache(max_entries=5, ttl_seconds=10, clock=clock)
        cache.set("k", "value")
        clock.now = 10.0
        assert cache.get("k") == "value"

    def test_entry_absent_after_ttl(self):
        clock = FakeClock()
        cache = ResponseCache(max_entries=5, ttl_seconds=10, clock=clock)
        cache.set("k", "value")
        clock.now = 10.5
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_read_does_not_refresh(self):
        clock = FakeClock()
        cache = ResponseCache(max_entries=5, ttl_seconds=10, clock=clock)
        cache.set("k", "value")
        clock.now = 8.0
        assert cache.get("k") == "value"
        clock.now = 11.0
        assert cache.get("k") is None


class TestEviction:
    """Size never exceeds the bound; the oldest insertion goes first."""

    def test_bound_is_never_exceeded(self):
        cache = ResponseCache(max_entries=3)
        for i in range(10):
            cache.set(f"k{i}", i)
            assert len(cache) <= 3

    def test_fifo_not_lru(self):
        cache = ResponseCache(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        # Reading "a" must not save it from eviction.
        assert cache.get("a") == 1
        cache.set("c", 3)
        assert "a" not in cache
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_overwrite_keeps_queue_position(self):
        cache = ResponseCache(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        assert len(cache) == 2
        cache.set("c", 3)
        assert "a" not in cache
        assert cache.get("b") == 2

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            ResponseCache(max_entries=0)

    def test_clear(self):
        cache = ResponseCache()
        cache.set("a", 1)
        cache.clear()
        assert len(cache) == 0


class TestMakeKey:

    def test_key_ignores_dict_order(self):
        k1 = ResponseCache.make_key("m", {"a": 1, "b": [1, 2]})
        k2 = ResponseCache.make_key("m", {"b": [1, 2], "a": 1})
        assert k1 == k2

    def test_key_depends_on_model(self):
        assert ResponseCache.make_key("m1", {"a": 1}) != ResponseCache.make_key("m2", {"a": 1})

    def test_key_depends_on_payload(self):
        assert ResponseCache.make_key("m", {"a": 1}) != ResponseCache.make_key("m", {"a": 2})
