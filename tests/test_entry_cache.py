"""Tests for the TTL + capacity bounded entry cache."""

import pytest

from src.cache import CacheKey, CacheKeyPrefix, EntryCache
from src.models.records import Domain


def key(owner: str = "u1", signature: str = "", domain: Domain = Domain.EXPENSES) -> CacheKey:
    return CacheKey(domain, owner, signature)


class TestExpiry:
    """Entries are visible while now - stored_at <= ttl."""

    def test_fresh_entry_is_returned(self, cache):
        cache.set(key(), [{"id": "a"}])
        assert cache.get(key()) == [{"id": "a"}]

    def test_entry_visible_exactly_at_ttl(self, cache, clock):
        cache.set(key(), ["x"])
        clock.advance(300)
        assert cache.get(key()) == ["x"]

    def test_entry_expires_just_past_ttl(self, cache, clock):
        cache.set(key(), ["x"])
        clock.advance(300.001)
        assert cache.get(key()) is None
        assert len(cache) == 0

    def test_expired_lookup_carries_stale_payload(self, cache, clock):
        cache.set(key(), ["old"])
        clock.advance(301)

        result = cache.lookup(key())

        assert result.hit is False
        assert result.had_stale is True
        assert result.stale_payload == ["old"]

    def test_cached_none_is_a_hit(self, cache):
        cache.set(key(signature="settings"), None)

        result = cache.lookup(key(signature="settings"))

        assert result.hit is True
        assert result.payload is None

    def test_overwrite_restarts_ttl(self, cache, clock):
        cache.set(key(), ["v1"])
        clock.advance(200)
        cache.set(key(), ["v2"])
        clock.advance(200)
        assert cache.get(key()) == ["v2"]


class TestCapacity:
    """Inserting a new key at capacity evicts the oldest stored_at."""

    @pytest.fixture
    def small_cache(self, clock):
        return EntryCache(ttl_seconds=300, max_entries=3, clock=clock)

    def fill(self, small_cache, clock):
        for signature in ("a", "b", "c"):
            small_cache.set(key(signature=signature), [signature])
            clock.advance(1)

    def test_oldest_entry_evicted(self, small_cache, clock):
        self.fill(small_cache, clock)

        small_cache.set(key(signature="d"), ["d"])

        assert len(small_cache) == 3
        assert key(signature="a") not in small_cache
        assert key(signature="d") in small_cache

    def test_overwrite_never_evicts(self, small_cache, clock):
        self.fill(small_cache, clock)

        small_cache.set(key(signature="a"), ["a2"])

        assert len(small_cache) == 3
        assert small_cache.get(key(signature="b")) == ["b"]
        assert small_cache.get(key(signature="a")) == ["a2"]

    def test_overwritten_entry_is_no_longer_oldest(self, small_cache, clock):
        self.fill(small_cache, clock)
        small_cache.set(key(signature="a"), ["a2"])

        small_cache.set(key(signature="d"), ["d"])

        assert key(signature="a") in small_cache
        assert key(signature="b") not in small_cache

    def test_size_never_exceeds_capacity(self, small_cache, clock):
        for i in range(20):
            small_cache.set(key(signature=str(i)), [i])
            clock.advance(0.5)
            assert len(small_cache) <= 3
        assert small_cache.stats().evictions == 17


class TestInvalidation:

    def test_invalidate_matches_domain_and_owner_structurally(self, cache):
        cache.set(key(owner="4", signature="x"), [1])
        cache.set(key(owner="4", signature="y"), [2])
        cache.set(key(owner="42", signature="x"), [3])
        cache.set(key(owner="4", signature="x", domain=Domain.INCOME), [4])

        removed = cache.invalidate(CacheKeyPrefix(Domain.EXPENSES, "4"))

        assert removed == 2
        assert key(owner="42", signature="x") in cache
        assert key(owner="4", signature="x", domain=Domain.INCOME) in cache

    def test_invalidate_without_matches_returns_zero(self, cache):
        cache.set(key(), [1])
        assert cache.invalidate(CacheKeyPrefix(Domain.GOALS, "u1")) == 0
        assert len(cache) == 1

    def test_clear_returns_removed_count(self, cache):
        cache.set(key(signature="a"), [1])
        cache.set(key(signature="b"), [2])
        assert cache.clear() == 2
        assert len(cache) == 0


class TestPatch:

    def test_patch_applies_to_every_list_under_prefix(self, cache):
        cache.set(key(signature="all"), [{"id": "a", "n": 1}, {"id": "b", "n": 2}])
        cache.set(key(signature="food"), [{"id": "a", "n": 1}])
        cache.set(key(owner="other"), [{"id": "a", "n": 1}])

        patched = cache.patch_entries(
            CacheKeyPrefix(Domain.EXPENSES, "u1"),
            lambda records: [{**r, "n": 10} if r["id"] == "a" else r for r in records],
        )

        assert patched == 2
        assert cache.get(key(signature="all")) == [{"id": "a", "n": 10}, {"id": "b", "n": 2}]
        assert cache.get(key(signature="food")) == [{"id": "a", "n": 10}]
        assert cache.get(key(owner="other")) == [{"id": "a", "n": 1}]

    def test_patch_skips_non_list_payloads(self, cache):
        cache.set(key(signature="settings"), {"enabled": True})

        patched = cache.patch_entries(CacheKeyPrefix(Domain.EXPENSES, "u1"), lambda r: [])

        assert patched == 0
        assert cache.get(key(signature="settings")) == {"enabled": True}

    def test_patch_keeps_stored_at(self, cache, clock):
        cache.set(key(), [{"id": "a"}])
        clock.advance(200)
        cache.patch_entries(CacheKeyPrefix(Domain.EXPENSES, "u1"), lambda r: r + [{"id": "b"}])
        clock.advance(150)

        assert cache.get(key()) is None


class TestConstruction:

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            EntryCache(ttl_seconds=0)

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            EntryCache(max_entries=0)

    def test_stats_track_hits_and_misses(self, cache, clock):
        cache.set(key(), [1])
        cache.get(key())
        cache.get(key(signature="missing"))
        clock.advance(301)
        cache.get(key())

        stats = cache.stats()

        assert stats.hits == 1
        assert stats.misses == 2
        assert stats.expirations == 1
        assert stats.size == 0
        assert stats.max_entries == 50
