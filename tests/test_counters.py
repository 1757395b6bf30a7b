"""Tests for server-side counter increments."""

import asyncio

import pytest

from src.models.records import Domain
from src.mutations import NOT_CONFIGURED, CounterService
from src.cache import EntryCache
from src.services.storage import StoreUnavailableError
from tests.conftest import NOW, OWNER, seed


GOALS = [
    {"id": "g1", "name": "Trip", "currentAmount": 100, "createdAt": NOW},
    {"id": "g2", "name": "Laptop", "currentAmount": 0, "createdAt": NOW},
]


class TestIncrement:

    @pytest.mark.asyncio
    async def test_returns_authoritative_value(self, counters, memory_store):
        await seed(memory_store, Domain.GOALS, GOALS)

        result = await counters.increment_field(OWNER, Domain.GOALS, "g1", "currentAmount", 50)

        assert result.success is True
        assert result.new_value == 150

    @pytest.mark.asyncio
    async def test_patches_cached_lists_without_requery(self, counters, executor, store, memory_store):
        await seed(memory_store, Domain.GOALS, GOALS)
        await executor.query(OWNER, Domain.GOALS)
        store.reset_calls()

        await counters.increment_field(OWNER, Domain.GOALS, "g1", "currentAmount", 25)
        goals = await executor.query(OWNER, Domain.GOALS)

        assert store.count("query_collection") == 0
        assert {g["id"]: g["currentAmount"] for g in goals} == {"g1": 125, "g2": 0}

    @pytest.mark.asyncio
    async def test_value_reflects_concurrent_writers(self, counters, memory_store, paths):
        await seed(memory_store, Domain.GOALS, GOALS)
        # Another session adds to the same goal behind this process's back
        await memory_store.increment_field(
            paths.document(OWNER, Domain.GOALS, "g1"), "currentAmount", 1000,
        )

        result = await counters.increment_field(OWNER, Domain.GOALS, "g1", "currentAmount", 50)

        assert result.new_value == 1150

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, counters, memory_store, paths):
        await seed(memory_store, Domain.GOALS, GOALS)

        await asyncio.gather(*[
            counters.increment_field(OWNER, Domain.GOALS, "g2", "currentAmount", 10)
            for _ in range(5)
        ])

        stored = await memory_store.get_document(paths.document(OWNER, Domain.GOALS, "g2"))
        assert stored["currentAmount"] == 50

    @pytest.mark.asyncio
    async def test_one_existence_read_one_increment_one_read_back(self, counters, store, memory_store):
        await seed(memory_store, Domain.GOALS, GOALS)

        await counters.increment_field(OWNER, Domain.GOALS, "g1", "currentAmount", 1)

        assert store.calls == ["get_document", "increment_field", "get_document"]


class TestIncrementFailures:

    @pytest.mark.asyncio
    async def test_missing_record_is_not_found_without_writes(self, counters, store):
        result = await counters.increment_field(OWNER, Domain.GOALS, "ghost", "currentAmount", 5)

        assert result.success is False
        assert result.error == "not found"
        assert store.count("increment_field") == 0
        assert store.count("set_document") == 0

    @pytest.mark.asyncio
    async def test_failed_increment_leaves_cache_untouched(self, counters, executor, store, memory_store):
        await seed(memory_store, Domain.GOALS, GOALS)
        before = await executor.query(OWNER, Domain.GOALS)
        store.fail_next("increment_field", StoreUnavailableError("down"))

        result = await counters.increment_field(OWNER, Domain.GOALS, "g1", "currentAmount", 5)

        assert result.success is False
        assert await executor.query(OWNER, Domain.GOALS) == before

    @pytest.mark.asyncio
    async def test_failed_read_back_invalidates(self, counters, executor, store, cache, memory_store):
        await seed(memory_store, Domain.GOALS, GOALS)
        await executor.query(OWNER, Domain.GOALS)
        store.fail_sequence("get_document", [None, StoreUnavailableError("down")])

        result = await counters.increment_field(OWNER, Domain.GOALS, "g1", "currentAmount", 5)

        assert result.success is True
        assert result.new_value is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delta", ["5", None, True, float("nan")])
    async def test_rejects_bad_delta(self, counters, store, delta):
        result = await counters.increment_field(OWNER, Domain.GOALS, "g1", "currentAmount", delta)

        assert result.success is False
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_rejects_blank_field(self, counters, store):
        result = await counters.increment_field(OWNER, Domain.GOALS, "g1", " ", 1)

        assert result.success is False
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        counters = CounterService(None, EntryCache())

        result = await counters.increment_field(OWNER, Domain.GOALS, "g1", "currentAmount", 1)

        assert result.error == NOT_CONFIGURED
