"""
Tests for the tag-invalidated order search cache.
"""

import pytest

from services.cache_service import ORDERS_TAG, TaggedCache


class FakeClock:
    """Manually advanced timer for TTL expiry."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestTaggedCache:

    def test_get_and_invalidate_tag(self):
        cache = TaggedCache()
        cache.set("a", [1], tags=[ORDERS_TAG])
        cache.set("b", [2])

        assert cache.get("a") == [1]
        assert cache.invalidate_tag(ORDERS_TAG) == 1
        assert cache.get("a") is None
        assert cache.get("b") == [2]

    def test_entries_expire(self, clock):
        cache = TaggedCache(ttl_seconds=60, timer=clock)
        cache.set("a", "v", tags=[ORDERS_TAG])

        clock.now = 61

        assert cache.get("a") is None
        assert len(cache) == 0

    def test_distinct_searches_do_not_accumulate(self, clock):
        cache = TaggedCache(ttl_seconds=1, timer=clock)

        for i in range(5000):
            clock.now = i * 2
            cache.set(("phoneNumber", str(i)), [], tags=[ORDERS_TAG])

        assert len(cache) == 1
        assert cache.tag_size(ORDERS_TAG) == 1

    def test_size_is_bounded(self):
        cache = TaggedCache(maxsize=10)

        for i in range(100):
            cache.set(i, i, tags=[ORDERS_TAG])

        assert len(cache) == 10
        assert cache.tag_size(ORDERS_TAG) == 10
        assert cache.get(99) == 99
        assert cache.get(0) is None
