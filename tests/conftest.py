"""
Shared fixtures for the data layer tests.

No test talks to a real backend: the in-memory store stands in for
Firestore, wrapped in a RecordingStore that counts calls and injects
failures on demand.
"""

import asyncio
import os
from datetime import date
from typing import Any, Optional, Sequence

import pytest

# Tests never reach the real backend
os.environ.pop("FIRESTORE_PROJECT_ID", None)

from src.cache import EntryCache
from src.models.records import Domain, Record
from src.mutations import CounterService, MutationCoordinator
from src.orchestrator import ExpenseSightData
from src.queries import QueryExecutor
from src.services.storage import (
    CollectionPath,
    DocumentPath,
    DocumentStoreInterface,
    FieldFilter,
    InMemoryDocumentStore,
    PathBuilder,
    WriteOperation,
)


OWNER = "user-42"
TODAY = date(2025, 3, 15)
NOW = "2025-03-15T10:00:00+00:00"


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStore(DocumentStoreInterface):
    """
    Wraps a real store, recording every call.

    ``fail_sequence(method, [None, error])`` makes the first call of
    ``method`` succeed and the second raise ``error``. ``hang`` names
    methods that never answer. ``gates`` holds calls of a method until
    its event is set.
    """

    def __init__(self, inner: Optional[DocumentStoreInterface] = None):
        self.inner = inner or InMemoryDocumentStore()
        self.calls: list[str] = []
        self.query_filters: list[list[FieldFilter]] = []
        self.batch_sizes: list[int] = []
        self.hang: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self._failures: dict[str, list[Optional[Exception]]] = {}

    def fail_sequence(self, method: str, outcomes: list[Optional[Exception]]) -> None:
        self._failures[method] = list(outcomes)

    def fail_next(self, method: str, error: Exception) -> None:
        self.fail_sequence(method, [error])

    def count(self, method: str) -> int:
        return self.calls.count(method)

    def reset_calls(self) -> None:
        self.calls.clear()
        self.query_filters.clear()
        self.batch_sizes.clear()

    async def _enter(self, method: str) -> None:
        self.calls.append(method)
        if method in self.hang:
            await asyncio.sleep(60)
        if method in self.gates:
            await self.gates[method].wait()
        outcomes = self._failures.get(method)
        if outcomes:
            error = outcomes.pop(0)
            if error is not None:
                raise error

    async def get_document(self, path: DocumentPath) -> Optional[Record]:
        await self._enter("get_document")
        return await self.inner.get_document(path)

    async def query_collection(
        self,
        collection: CollectionPath,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Record]:
        self.query_filters.append(list(filters))
        await self._enter("query_collection")
        return await self.inner.query_collection(
            collection, filters=filters, order_by=order_by, descending=descending, limit=limit,
        )

    async def set_document(self, path: DocumentPath, data: Record, merge: bool = False) -> None:
        await self._enter("set_document")
        await self.inner.set_document(path, data, merge=merge)

    async def delete_document(self, path: DocumentPath) -> None:
        await self._enter("delete_document")
        await self.inner.delete_document(path)

    async def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        self.batch_sizes.append(len(operations))
        await self._enter("commit_batch")
        await self.inner.commit_batch(operations)

    async def increment_field(self, path: DocumentPath, field_name: str, delta: float) -> None:
        await self._enter("increment_field")
        await self.inner.increment_field(path, field_name, delta)

    async def array_union(
        self,
        path: DocumentPath,
        field_name: str,
        values: Sequence[Any],
        fields: Optional[Record] = None,
    ) -> None:
        await self._enter("array_union")
        await self.inner.array_union(path, field_name, values, fields)

    async def array_remove(
        self,
        path: DocumentPath,
        field_name: str,
        values: Sequence[Any],
        fields: Optional[Record] = None,
    ) -> None:
        await self._enter("array_remove")
        await self.inner.array_remove(path, field_name, values, fields)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def cache(clock):
    return EntryCache(ttl_seconds=300.0, max_entries=50, clock=clock)


@pytest.fixture
def paths():
    return PathBuilder()


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore()


@pytest.fixture
def store(memory_store):
    return RecordingStore(memory_store)


@pytest.fixture
def executor(store, cache, paths):
    return QueryExecutor(store, cache, paths=paths)


@pytest.fixture
def coordinator(store, cache, paths):
    return MutationCoordinator(store, cache, paths=paths, now=lambda: NOW)


@pytest.fixture
def counters(store, cache, paths):
    return CounterService(store, cache, paths=paths, now=lambda: NOW)


@pytest.fixture
def data(store, cache):
    return ExpenseSightData(store, cache=cache, today=lambda: TODAY, now=lambda: NOW)


async def seed(
    memory_store: InMemoryDocumentStore,
    domain: Domain,
    records: list[Record],
    owner: str = OWNER,
) -> None:
    """Write records straight into the backing store, bypassing the layer under test."""
    paths = PathBuilder()
    for record in records:
        data = {k: v for k, v in record.items() if k != "id"}
        await memory_store.set_document(paths.document(owner, domain, record["id"]), data)


EXPENSES = [
    {"id": "e1", "date": "2025-03-01", "amount": 120, "category": "food", "description": "Lunch"},
    {"id": "e2", "date": "2025-03-05", "amount": 40, "category": "transport", "description": "Metro"},
    {"id": "e3", "date": "2025-03-10", "amount": 300, "category": "food", "description": "Groceries"},
    {"id": "e4", "date": "2025-02-20", "amount": 80, "category": "fun", "description": "Movie"},
]
