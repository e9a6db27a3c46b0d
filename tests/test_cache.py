"""Tests for the result cache."""

import time

from markmind.cache import ResultCache, make_cache_key


class TestCacheKey:
    """Test cache key derivation."""

    def test_key_format(self):
        key = make_cache_key("link_concepts", {"source": "a"})
        operation, digest = key.split(":")
        assert operation == "link_concepts"
        assert len(digest) == 16

    def test_equal_requests_share_a_key(self):
        k1 = make_cache_key("concepts", {"text": "hello", "min_confidence": 0.7})
        k2 = make_cache_key("concepts", {"min_confidence": 0.7, "text": "hello"})
        assert k1 == k2

    def test_operation_and_request_distinguish_keys(self):
        assert make_cache_key("a", {"x": 1}) != make_cache_key("b", {"x": 1})
        assert make_cache_key("a", {"x": 1}) != make_cache_key("a", {"x": 2})


class TestResultCache:
    """Test get/set, expiry and eviction."""

    def test_get_missing(self):
        cache = ResultCache()
        assert cache.get("nope") == (False, None)

    def test_set_and_get(self):
        cache = ResultCache()
        cache.set("k", ["a", "b"])
        assert cache.get("k") == (True, ["a", "b"])

    def test_cached_none_is_found(self):
        cache = ResultCache()
        cache.set("k", None)
        assert cache.get("k") == (True, None)

    def test_one_entry_per_key(self):
        cache = ResultCache()
        cache.set("k", 1)
        cache.set("k", 2)
        assert len(cache) == 1
        assert cache.get("k") == (True, 2)

    def test_ttl_expiry(self):
        cache = ResultCache(ttl=0.05)
        cache.set("k", 1)
        time.sleep(0.1)
        assert cache.get("k") == (False, None)
        assert len(cache) == 0

    def test_no_ttl_never_expires(self):
        cache = ResultCache(ttl=None)
        cache.set("k", 1)
        time.sleep(0.05)
        assert cache.get("k") == (True, 1)

    def test_evicts_oldest_at_capacity(self):
        cache = ResultCache(maxsize=2)
        cache.set("a", 1)
        time.sleep(0.01)
        cache.set("b", 2)
        time.sleep(0.01)
        cache.set("c", 3)
        assert len(cache) == 2
        assert cache.get("a") == (False, None)
        assert cache.get("c") == (True, 3)

    def test_invalidate_and_clear(self):
        cache = ResultCache()
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False
        assert cache.clear() == 1
        assert len(cache) == 0

    def test_stats(self):
        cache = ResultCache(maxsize=10)
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        stats = cache.stats
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["size"] == 1
