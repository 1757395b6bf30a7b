"""Tests for cached reads, the not-servable fallback and read degradation."""

import asyncio

import pytest

from src.cache import EntryCache
from src.models.records import Domain, QueryFilters
from src.queries import QueryExecutor
from src.services.storage import (
    InMemoryDocumentStore,
    PermissionDeniedError,
    StoreUnavailableError,
)
from tests.conftest import EXPENSES, OWNER, RecordingStore, seed


def ids(records):
    return [r["id"] for r in records]


class TestCaching:

    @pytest.mark.asyncio
    async def test_second_identical_read_is_served_from_cache(self, executor, store, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        first = await executor.query(OWNER, Domain.EXPENSES)
        second = await executor.query(OWNER, Domain.EXPENSES)

        assert first == second
        assert store.count("query_collection") == 1

    @pytest.mark.asyncio
    async def test_results_follow_domain_ordering(self, executor, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        records = await executor.query(OWNER, Domain.EXPENSES)

        assert ids(records) == ["e3", "e2", "e1", "e4"]

    @pytest.mark.asyncio
    async def test_use_cache_false_forces_remote_read(self, executor, store, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        await executor.query(OWNER, Domain.EXPENSES)
        await executor.query(OWNER, Domain.EXPENSES, use_cache=False)

        assert store.count("query_collection") == 2

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_remote_read(self, executor, store, memory_store, clock):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        await executor.query(OWNER, Domain.EXPENSES)
        clock.advance(301)
        await executor.query(OWNER, Domain.EXPENSES)

        assert store.count("query_collection") == 2

    @pytest.mark.asyncio
    async def test_caller_cannot_mutate_cached_list(self, executor, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        records = await executor.query(OWNER, Domain.EXPENSES)
        records.clear()

        assert len(await executor.query(OWNER, Domain.EXPENSES)) == 4

    @pytest.mark.asyncio
    async def test_caller_cannot_mutate_cached_records(self, executor, store, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        first = await executor.query(OWNER, Domain.EXPENSES)
        first[0]["amount"] = 999999
        second = await executor.query(OWNER, Domain.EXPENSES)
        second[1]["amount"] = 999999
        third = await executor.query(OWNER, Domain.EXPENSES)

        assert [r["amount"] for r in third] == [300, 40, 120, 80]
        assert store.count("query_collection") == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_misses_both_read_remotely(self, executor, store, cache, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)
        gate = asyncio.Event()
        store.gates["query_collection"] = gate

        first = asyncio.ensure_future(executor.query(OWNER, Domain.EXPENSES))
        second = asyncio.ensure_future(executor.query(OWNER, Domain.EXPENSES))
        for _ in range(100):
            if store.count("query_collection") == 2:
                break
            await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(first, second)

        assert store.count("query_collection") == 2
        assert results[0] == results[1]
        assert len(results[0]) == 4
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_owners_never_share_results(self, executor, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        assert await executor.query("someone-else", Domain.EXPENSES) == []
        assert len(await executor.query(OWNER, Domain.EXPENSES)) == 4


class TestFilters:

    @pytest.mark.asyncio
    async def test_native_range_predicates(self, executor, store, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        records = await executor.query(
            OWNER, Domain.EXPENSES,
            QueryFilters(start_date="2025-03-01", end_date="2025-03-05"),
        )

        assert ids(records) == ["e2", "e1"]
        assert [(f.field, f.op) for f in store.query_filters[0]] == [("date", ">="), ("date", "<=")]

    @pytest.mark.asyncio
    async def test_category_is_applied_client_side(self, executor, store, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        records = await executor.query(OWNER, Domain.EXPENSES, QueryFilters(category="food"))

        assert ids(records) == ["e3", "e1"]
        assert store.query_filters == [[]]

    @pytest.mark.asyncio
    async def test_limit_caps_the_remote_read(self, executor, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        records = await executor.query(OWNER, Domain.EXPENSES, QueryFilters(limit_count=2))

        assert ids(records) == ["e3", "e2"]


class TestFallback:
    """A query the backend cannot serve is retried once without predicates."""

    @pytest.fixture
    def unindexed(self):
        return RecordingStore(InMemoryDocumentStore(indexed_fields=()))

    @pytest.mark.asyncio
    async def test_fallback_matches_the_servable_result(self, unindexed, memory_store, cache):
        await seed(unindexed.inner, Domain.EXPENSES, EXPENSES)
        await seed(memory_store, Domain.EXPENSES, EXPENSES)
        filters = QueryFilters(start_date="2025-03-01", end_date="2025-03-31", category="food")

        degraded = await QueryExecutor(unindexed, cache).query(OWNER, Domain.EXPENSES, filters)
        direct = await QueryExecutor(memory_store, EntryCache()).query(OWNER, Domain.EXPENSES, filters)

        assert degraded == direct
        assert ids(degraded) == ["e3", "e1"]

    @pytest.mark.asyncio
    async def test_fallback_drops_predicates_only_once(self, unindexed, cache):
        await seed(unindexed.inner, Domain.EXPENSES, EXPENSES)

        await QueryExecutor(unindexed, cache).query(
            OWNER, Domain.EXPENSES, QueryFilters(start_date="2025-03-01"),
        )

        assert unindexed.count("query_collection") == 2
        assert len(unindexed.query_filters[0]) == 1
        assert unindexed.query_filters[1] == []

    @pytest.mark.asyncio
    async def test_fallback_result_is_cached(self, unindexed, cache):
        await seed(unindexed.inner, Domain.EXPENSES, EXPENSES)
        executor = QueryExecutor(unindexed, cache)
        filters = QueryFilters(start_date="2025-03-01")

        await executor.query(OWNER, Domain.EXPENSES, filters)
        await executor.query(OWNER, Domain.EXPENSES, filters)

        assert unindexed.count("query_collection") == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, executor, store, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)
        store.fail_next("query_collection", StoreUnavailableError("network down"))

        records = await executor.query(
            OWNER, Domain.EXPENSES, QueryFilters(start_date="2025-03-01"),
        )

        assert records == []
        assert store.count("query_collection") == 1


class TestDegradation:

    @pytest.mark.asyncio
    async def test_failure_without_cache_returns_empty(self, executor, store):
        store.fail_next("query_collection", PermissionDeniedError("denied"))

        assert await executor.query(OWNER, Domain.EXPENSES) == []

    @pytest.mark.asyncio
    async def test_failure_serves_expired_value(self, executor, store, memory_store, clock):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)
        before = await executor.query(OWNER, Domain.EXPENSES)
        clock.advance(301)
        store.fail_next("query_collection", StoreUnavailableError("down"))

        after = await executor.query(OWNER, Domain.EXPENSES)

        assert after == before

    @pytest.mark.asyncio
    async def test_forced_read_failure_serves_cached_value(self, executor, store, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)
        before = await executor.query(OWNER, Domain.EXPENSES)
        store.fail_next("query_collection", StoreUnavailableError("down"))

        after = await executor.query(OWNER, Domain.EXPENSES, use_cache=False)

        assert after == before

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_empty(self, store, cache):
        store.hang.add("query_collection")
        executor = QueryExecutor(store, cache, timeout_seconds=0.05)

        assert await executor.query(OWNER, Domain.EXPENSES) == []
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_unconfigured_store_returns_empty(self, cache):
        executor = QueryExecutor(None, cache)

        assert await executor.query(OWNER, Domain.EXPENSES) == []
        assert await executor.get_record(OWNER, Domain.EXPENSES, "e1") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_blank_owner_returns_empty(self, executor, store):
        assert await executor.query("  ", Domain.EXPENSES) == []
        assert store.calls == []


class TestSingleDocuments:

    @pytest.mark.asyncio
    async def test_get_record(self, executor, memory_store):
        await seed(memory_store, Domain.EXPENSES, EXPENSES)

        record = await executor.get_record(OWNER, Domain.EXPENSES, "e2")

        assert record["description"] == "Metro"
        assert await executor.get_record(OWNER, Domain.EXPENSES, "missing") is None

    @pytest.mark.asyncio
    async def test_missing_settings_document_is_cached(self, executor, store):
        first = await executor.get_settings_document(OWNER, Domain.BUDGET, default={"x": 1})
        second = await executor.get_settings_document(OWNER, Domain.BUDGET, default={"x": 1})

        assert first == second == {"x": 1}
        assert store.count("get_document") == 1

    @pytest.mark.asyncio
    async def test_settings_document_read(self, executor, memory_store, paths):
        await memory_store.set_document(
            paths.settings_document(OWNER, "budget"), {"monthlyLimit": 50000},
        )

        document = await executor.get_settings_document(OWNER, Domain.BUDGET)

        assert document["monthlyLimit"] == 50000
        assert document["id"] == "budget"

    @pytest.mark.asyncio
    async def test_settings_nested_values_are_copied(self, executor, memory_store, paths):
        await memory_store.set_document(
            paths.settings_document(OWNER, "notifications"),
            {"dailySummary": {"enabled": True, "time": "21:00"}},
        )

        first = await executor.get_settings_document(OWNER, Domain.NOTIFICATIONS)
        first["dailySummary"]["time"] = "06:00"
        second = await executor.get_settings_document(OWNER, Domain.NOTIFICATIONS)

        assert second["dailySummary"]["time"] == "21:00"

    @pytest.mark.asyncio
    async def test_get_document_caches_absence(self, executor, store):
        assert await executor.get_document(OWNER, Domain.BUDGET, "b1") is None
        assert await executor.get_document(OWNER, Domain.BUDGET, "b1") is None

        assert store.count("get_document") == 1

    @pytest.mark.asyncio
    async def test_get_document_serves_stale_on_failure(self, executor, store, memory_store, paths, clock):
        await memory_store.set_document(paths.document(OWNER, Domain.BUDGET, "b1"), {"overallLimit": 5})
        await executor.get_document(OWNER, Domain.BUDGET, "b1")
        clock.advance(301)
        store.fail_next("get_document", StoreUnavailableError("down"))

        document = await executor.get_document(OWNER, Domain.BUDGET, "b1")

        assert document["overallLimit"] == 5

    @pytest.mark.asyncio
    async def test_read_record_distinguishes_failure_from_absence(self, executor, store):
        assert await executor.read_record(OWNER, Domain.BILLS, "b1") is None

        store.fail_next("get_document", StoreUnavailableError("down"))
        with pytest.raises(StoreUnavailableError):
            await executor.read_record(OWNER, Domain.BILLS, "b1")

        store.fail_next("get_document", StoreUnavailableError("down"))
        assert await executor.get_record(OWNER, Domain.BILLS, "b1") is None


class TestUnusablePathArguments:

    @pytest.mark.asyncio
    async def test_owner_with_slash_reads_nothing(self, executor, store):
        assert await executor.query("a/b", Domain.EXPENSES) == []
        assert await executor.get_settings_document("a/b", Domain.BUDGET, default={}) == {}
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_ids_with_slash_read_nothing(self, executor, store):
        assert await executor.get_record(OWNER, Domain.EXPENSES, "x/y") is None
        assert await executor.get_document(OWNER, Domain.BUDGET, "x/y") is None
        assert await executor.list_subrecords(OWNER, Domain.GOALS, "g1", "a/b") == []
        assert await executor.list_subrecords(OWNER, Domain.GOALS, "g/1", "contributions") == []
        assert store.calls == []
