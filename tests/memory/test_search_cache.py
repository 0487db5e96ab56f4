"""Tests for SearchResultCache (TTL, LRU bound, invalidation)."""

from src.memory.search_cache import SearchResultCache


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestSearchResultCache:
    def test_hit_and_miss(self) -> None:
        cache = SearchResultCache()
        key = cache.key("org", "leads", "u1", "  Jane ")
        assert cache.get(key) is None
        cache.set(key, {"count": 1})
        assert cache.get(cache.key("org", "leads", "u1", "jane")) == {"count": 1}
        assert (cache.hits, cache.misses) == (1, 1)

    def test_key_includes_user(self) -> None:
        cache = SearchResultCache()
        cache.set(cache.key("org", "leads", "u1", "q"), "mine")
        assert cache.get(cache.key("org", "leads", "u2", "q")) is None

    def test_entries_expire(self) -> None:
        clock = Clock()
        cache = SearchResultCache(ttl_seconds=10, clock=clock)
        key = cache.key("org", "leads", "u1", "q")
        cache.set(key, "v")
        clock.now = 9.9
        assert cache.get(key) == "v"
        clock.now = 10.0
        assert cache.get(key) is None
        assert len(cache) == 0

    def test_least_recently_used_evicted(self) -> None:
        cache = SearchResultCache(max_entries=2)
        a, b, c = (cache.key("org", "leads", "u1", q) for q in "abc")
        cache.set(a, 1)
        cache.set(b, 2)
        cache.get(a)
        cache.set(c, 3)
        assert cache.get(b) is None
        assert cache.get(a) == 1 and cache.get(c) == 3

    def test_invalidate_by_org_and_module(self) -> None:
        cache = SearchResultCache()
        cache.set(cache.key("org", "leads", "u1", "q"), 1)
        cache.set(cache.key("org", "tasks", "u1", "q"), 2)
        cache.set(cache.key("other", "leads", "u1", "q"), 3)
        assert cache.invalidate("org", "leads") == 1
        assert len(cache) == 2
        assert cache.invalidate("org") == 1
        assert len(cache) == 1

    def test_disabled_cache_stores_nothing(self) -> None:
        cache = SearchResultCache(max_entries=0)
        cache.set(cache.key("org", "leads", "u1", "q"), 1)
        assert len(cache) == 0
