"""Tests for the stream URL cache and the search page cache."""

import pytest

from maboroshi.lib.cache import PageCache, StreamCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestStreamCache:
    def test_lookup_miss(self):
        assert StreamCache().lookup("nothing") is None

    def test_insert_then_lookup(self):
        cache = StreamCache()
        cache.insert("lofi", "https://a/1")
        assert cache.lookup("lofi") == "https://a/1"

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = StreamCache(ttl=100, clock=clock)
        cache.insert("lofi", "https://a/1")
        clock.now += 99.9
        assert cache.lookup("lofi") == "https://a/1"
        clock.now += 0.1
        assert cache.lookup("lofi") is None

    def test_capacity_evicts_oldest(self):
        clock = FakeClock()
        cache = StreamCache(capacity=3, clock=clock)
        for i in range(4):
            cache.insert(f"song{i}", f"url{i}")
            clock.now += 1
        assert len(cache) == 3
        assert "song0" not in cache
        assert cache.lookup("song3") == "url3"

    def test_size_never_exceeds_capacity(self):
        clock = FakeClock()
        cache = StreamCache(capacity=5, clock=clock)
        for i in range(50):
            cache.insert(f"k{i % 12}", "u")
            clock.now += 1
            assert len(cache) <= 5

    def test_reinsert_valid_entry_refreshes_without_eviction(self):
        clock = FakeClock()
        cache = StreamCache(capacity=2, clock=clock)
        cache.insert("a", "url-a")
        clock.now += 1
        cache.insert("b", "url-b")
        clock.now += 1
        cache.insert("a", "url-a2")
        assert len(cache) == 2
        assert cache.lookup("a") == "url-a2"
        assert cache.lookup("b") == "url-b"

    def test_expired_entry_replaced(self):
        clock = FakeClock()
        cache = StreamCache(capacity=2, ttl=10, clock=clock)
        cache.insert("a", "old")
        clock.now += 20
        cache.insert("a", "new")
        assert cache.lookup("a") == "new"
        assert len(cache) == 1


class TestPageCache:
    def test_get_missing_page(self):
        assert PageCache().get(1) is None

    def test_put_copies_results(self):
        cache = PageCache()
        results = ["a", "b"]
        cache.put(1, results)
        results.append("c")
        assert cache.get(1) == ["a", "b"]

    def test_inserting_eleven_pages_drops_page_one(self):
        cache = PageCache(capacity=10)
        for page in range(1, 12):
            cache.put(page, [f"r{page}"])
        assert len(cache) == 10
        assert 1 not in cache
        assert cache.pages() == list(range(2, 12))

    def test_eviction_is_lowest_page_not_lru(self):
        cache = PageCache(capacity=2)
        cache.put(5, ["x"])
        cache.put(2, ["y"])
        cache.get(2)
        cache.put(7, ["z"])
        assert cache.pages() == [5, 7]

    def test_clear(self):
        cache = PageCache()
        cache.put(1, ["a"])
        cache.clear()
        assert len(cache) == 0


@pytest.mark.parametrize("capacity", [1, 3, 10])
def test_page_cache_capacity(capacity):
    cache = PageCache(capacity=capacity)
    for page in range(1, 30):
        cache.put(page, [])
    assert len(cache) == capacity
