"""Tests for the content-addressed cache"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from trainermatch.errors import CacheError
from trainermatch.schemas.matching import MatchResult
from trainermatch.services.cache import ContentAddressedCache
from trainermatch.services.cache_store import InMemoryCacheStore, utcnow


class FakeClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, delta: timedelta):
        self.now += delta


def match(expert_id: int, score: int = 50) -> MatchResult:
    return MatchResult(
        expert_id=expert_id,
        match_score=score,
        reason_1=f"First {expert_id}",
        reason_2=f"Second {expert_id}",
    )


class TestOverviewCache:
    """Overview namespace"""

    @pytest.mark.asyncio
    async def test_round_trip(self, cache, sample_profile):
        assert await cache.get_overview("key") is None
        await cache.put_overview("key", sample_profile, "Overview text")
        assert await cache.get_overview("key") == "Overview text"

    @pytest.mark.asyncio
    async def test_hit_updates_access_metadata(self, cache, store, sample_profile):
        await cache.put_overview("key", sample_profile, "Overview text")
        await cache.get_overview("key")
        await cache.get_overview("key")
        await cache.flush()

        entry = store.overviews["key"]
        assert entry.hit_count == 2
        assert entry.last_accessed_at is not None
        assert entry.profile["goals"] == sample_profile.goals

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, store, sample_profile):
        clock = FakeClock()
        cache = ContentAddressedCache(store, clock=clock)
        await cache.put_overview("key", sample_profile, "Overview text")

        clock.advance(timedelta(days=6, hours=23))
        assert await cache.get_overview("key") == "Overview text"

        clock.advance(timedelta(hours=2))
        assert await cache.get_overview("key") is None

    @pytest.mark.asyncio
    async def test_put_replaces_existing(self, cache, sample_profile):
        await cache.put_overview("key", sample_profile, "First")
        await cache.put_overview("key", sample_profile, "Second")
        assert await cache.get_overview("key") == "Second"


class TestMatchCache:
    """Match namespace"""

    @pytest.mark.asyncio
    async def test_full_hit(self, cache):
        await cache.put_matches("hash", [match(i, score=i * 10) for i in range(1, 4)])
        results = await cache.get_matches("hash", [1, 2, 3])

        assert results is not None
        assert list(results) == [1, 2, 3]
        assert results[2].match_score == 20
        assert results[2].reason_1 == "First 2"

    @pytest.mark.asyncio
    async def test_partial_hit_is_a_miss(self, cache):
        await cache.put_matches("hash", [match(i) for i in range(1, 8)])
        assert await cache.get_matches("hash", list(range(1, 11))) is None
        assert cache.stats()["matches"]["misses"] == 1

    @pytest.mark.asyncio
    async def test_empty_id_list_is_a_miss(self, cache):
        assert await cache.get_matches("hash", []) is None

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, cache, store):
        await cache.put_matches("hash", [match(1, 40)])
        await cache.put_matches("hash", [match(1, 60)])
        await cache.put_match("hash", match(1, 70))

        assert len(store.matches) == 1
        results = await cache.get_matches("hash", [1])
        assert results[1].match_score == 70

    @pytest.mark.asyncio
    async def test_expired_matches_are_a_miss(self, store):
        clock = FakeClock()
        cache = ContentAddressedCache(store, clock=clock)
        await cache.put_matches("hash", [match(1), match(2)])

        clock.advance(timedelta(hours=25))
        assert await cache.get_matches("hash", [1, 2]) is None

    @pytest.mark.asyncio
    async def test_invalidate(self, cache):
        await cache.put_matches("hash", [match(1), match(2)])
        await cache.put_matches("other", [match(1)])

        assert await cache.invalidate("hash") == 2
        assert await cache.get_matches("hash", [1]) is None
        assert await cache.get_matches("other", [1]) is not None

    @pytest.mark.asyncio
    async def test_purge_older_than(self, store, sample_profile):
        clock = FakeClock()
        cache = ContentAddressedCache(store, clock=clock)
        await cache.put_matches("old", [match(1)])
        await cache.put_overview("old-key", sample_profile, "Old")

        clock.advance(timedelta(days=8))
        await cache.put_matches("new", [match(1)])

        removed = await cache.purge_older_than(timedelta(days=7))
        assert removed == {"overviews": 1, "matches": 1}
        assert ("new", 1) in store.matches


class TestStorageFailures:
    """A failing store degrades to misses and no-ops"""

    @pytest.fixture
    def broken_store(self):
        store = InMemoryCacheStore()
        error = CacheError("connection refused", operation="test")
        store.get_overview = AsyncMock(side_effect=error)
        store.upsert_overview = AsyncMock(side_effect=error)
        store.get_matches = AsyncMock(side_effect=error)
        store.upsert_matches = AsyncMock(side_effect=error)
        store.delete_matches = AsyncMock(side_effect=error)
        return store

    @pytest.mark.asyncio
    async def test_reads_degrade_to_miss(self, broken_store):
        cache = ContentAddressedCache(broken_store)
        assert await cache.get_overview("key") is None
        assert await cache.get_matches("hash", [1, 2]) is None

    @pytest.mark.asyncio
    async def test_writes_are_dropped(self, broken_store, sample_profile):
        cache = ContentAddressedCache(broken_store)
        await cache.put_overview("key", sample_profile, "Overview")
        await cache.put_matches("hash", [match(1)])
        assert await cache.invalidate("hash") == 0

        stats = cache.stats()
        assert stats["overview"]["errors"] == 1
        assert stats["matches"]["errors"] == 2
        assert stats["matches"]["writes"] == 0


class TestStats:
    """Hit/miss bookkeeping"""

    @pytest.mark.asyncio
    async def test_counters(self, cache, sample_profile):
        await cache.get_overview("key")
        await cache.put_overview("key", sample_profile, "Overview")
        await cache.get_overview("key")
        await cache.flush()

        stats = cache.stats()
        assert stats["overview"] == {"hits": 1, "misses": 1, "writes": 1, "errors": 0}
        assert stats["matches"] == {"hits": 0, "misses": 0, "writes": 0, "errors": 0}
