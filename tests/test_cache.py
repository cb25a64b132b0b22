import threading

import pytest

from factories import FakeMonotonic
from studymatch.cache import ResultCache, pair_key


@pytest.fixture
def ticker():
    return FakeMonotonic()


class TestExpiry:
    def test_hit_before_ttl(self, ticker):
        cache = ResultCache(ttl_seconds=60, max_size=10, clock=ticker)
        cache.put(("a", "b"), "result")
        ticker.advance(59.9)
        assert cache.get(("a", "b")) == "result"

    def test_miss_at_ttl(self, ticker):
        cache = ResultCache(ttl_seconds=60, max_size=10, clock=ticker)
        cache.put(("a", "b"), "result")
        ticker.advance(60)
        assert cache.get(("a", "b")) is None
        assert len(cache) == 0
        assert cache.stats().expirations == 1

    def test_ttl_counts_from_write_not_read(self, ticker):
        cache = ResultCache(ttl_seconds=60, max_size=10, clock=ticker)
        cache.put("k", 1)
        ticker.advance(30)
        assert cache.get("k") == 1
        ticker.advance(30)
        assert cache.get("k") is None

    def test_rewrite_refreshes_ttl(self, ticker):
        cache = ResultCache(ttl_seconds=60, max_size=10, clock=ticker)
        cache.put("k", 1)
        ticker.advance(50)
        cache.put("k", 2)
        ticker.advance(50)
        assert cache.get("k") == 2

    def test_contains_respects_expiry(self, ticker):
        cache = ResultCache(ttl_seconds=10, max_size=10, clock=ticker)
        cache.put("k", 1)
        assert "k" in cache
        ticker.advance(10)
        assert "k" not in cache


class TestEviction:
    def test_least_recently_used_is_evicted(self, ticker):
        cache = ResultCache(ttl_seconds=600, max_size=2, clock=ticker)
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.get("a") == 1
        cache.put("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3
        assert cache.stats().evictions == 1

    def test_expired_entries_are_purged_before_evicting(self, ticker):
        cache = ResultCache(ttl_seconds=10, max_size=2, clock=ticker)
        cache.put("old", 1)
        ticker.advance(5)
        cache.put("fresh", 2)
        ticker.advance(6)
        cache.put("new", 3)
        assert cache.get("fresh") == 2
        assert cache.get("new") == 3
        assert cache.stats().evictions == 0

    def test_never_exceeds_max_size(self, ticker):
        cache = ResultCache(ttl_seconds=600, max_size=5, clock=ticker)
        for i in range(50):
            cache.put(i, i)
        assert len(cache) == 5

    def test_clear(self, ticker):
        cache = ResultCache(ttl_seconds=600, max_size=5, clock=ticker)
        cache.put("a", 1)
        cache.clear()
        assert len(cache) == 0


class TestConfiguration:
    @pytest.mark.parametrize("ttl,size", [(0, 10), (-1, 10), (60, 0)])
    def test_rejects_invalid_bounds(self, ttl, size):
        with pytest.raises(ValueError):
            ResultCache(ttl_seconds=ttl, max_size=size)

    def test_pair_key_is_ordered(self):
        assert pair_key("p1", "p2") != pair_key("p2", "p1")
        assert pair_key("p1", "p2") == ("p1", "p2")


def test_concurrent_puts_stay_within_bounds():
    cache = ResultCache(ttl_seconds=600, max_size=50)

    def writer(offset):
        for i in range(200):
            cache.put((offset, i), i)
            cache.get((offset, i // 2))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) == 50
