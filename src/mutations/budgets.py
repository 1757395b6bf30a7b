"""
Monthly budgets

One document per owner and month in the ``budgets`` collection, id
``<owner>_<YYYY-MM>``. It holds the month's limits and a list of manual
spending entries recorded outside the synced expenses.

Reads go through QueryExecutor.get_document, which caches the month
(absence included). Every write here drops that one cached month once
the store has acknowledged it, so the next read sees the new document.

DESIGN DECISION: Saving limits checks existence first, and that check
must succeed. A blind overwrite after a failed check could replace a
document whose manual entries we never saw.
"""

import secrets
import time
from typing import Optional, Union

from src.cache import document_key
from src.models.records import (
    DEFAULT_CURRENCY,
    MANUAL_ENTRIES_FIELD,
    Domain,
    MutationResult,
    Record,
    budget_document_id,
)
from src.mutations.base import RemoteWriter
from src.services.storage import DocumentPath, StorageError
from src.validation import InvalidMutationError


def generate_entry_id() -> str:
    """Manual entry id: ``<epoch millis>_<random>``."""
    return f"{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class MonthlyBudgetService(RemoteWriter):
    """Writes to per-month budget documents."""

    def _path(self, owner: str, month: str) -> DocumentPath:
        return self._paths.document(owner, Domain.BUDGET, budget_document_id(owner, month))

    def _forget(self, owner: str, month: str) -> None:
        key = document_key(Domain.BUDGET, owner, budget_document_id(owner, month))
        removed = self._cache.discard(key)
        self._audit.log_cache_invalidated(owner, Domain.BUDGET, int(removed))

    def _checked(
        self,
        operation: str,
        owner_id: Union[str, int],
        month: str,
    ) -> tuple[Optional[str], Optional[str], Optional[MutationResult]]:
        if self._disabled(owner_id):
            return None, None, self._not_configured()
        try:
            return self._validator.owner(owner_id), self._validator.month(month), None
        except InvalidMutationError as e:
            return None, None, self._rejected(operation, e)

    async def _read(self, path: DocumentPath, month: str) -> Optional[Record]:
        return await self._call(self._store.get_document(path), f"Reading budget {month}")

    def _new_document(self, owner: str, month: str, now: str) -> Record:
        return {
            "month": month,
            "userId": owner,
            "overallLimit": 0,
            "currency": DEFAULT_CURRENCY,
            "categoryLimits": {},
            MANUAL_ENTRIES_FIELD: [],
            "createdAt": now,
            "updatedAt": now,
        }

    async def save_budget(
        self,
        owner_id: Union[str, int],
        month: str,
        budget: Record,
    ) -> MutationResult:
        """
        Create the month's budget or update its limits.

        An existing document keeps its manual entries and ``createdAt``.

        Returns:
            success with ``record_id`` set to the budget document id and
            ``details["created"]`` telling a new document from an update
        """
        owner, month, rejected = self._checked("save_budget", owner_id, month)
        if rejected is not None:
            return rejected
        if not isinstance(budget, dict):
            return self._rejected("save_budget", InvalidMutationError("Budget must be a mapping"))

        path = self._path(owner, month)
        now = self._now()
        limits = {
            "overallLimit": budget.get("overallLimit") or 0,
            "currency": budget.get("currency") or DEFAULT_CURRENCY,
            "categoryLimits": dict(budget.get("categoryLimits") or {}),
            "updatedAt": now,
        }
        try:
            existing = await self._read(path, month)
            if existing is None:
                await self._call(
                    self._store.set_document(path, {**self._new_document(owner, month, now), **limits}),
                    f"Creating budget {month}",
                )
            else:
                await self._call(
                    self._store.set_document(path, limits, merge=True),
                    f"Updating budget {month}",
                )
        except StorageError as e:
            self._audit.log_write_failed(owner, Domain.BUDGET, "save_budget", e)
            return MutationResult.failed(str(e), record_id=path.id)

        self._forget(owner, month)
        if existing is None:
            self._audit.log_records_created(owner, Domain.BUDGET, 1)
        else:
            self._audit.log_record_updated(owner, Domain.BUDGET, path.id, list(limits))
        return MutationResult.ok(record_id=path.id, details={"created": existing is None})

    async def add_manual_entry(
        self,
        owner_id: Union[str, int],
        month: str,
        entry: Record,
    ) -> MutationResult:
        """
        Append a manual spending entry to the month's budget.

        A month without a budget gets one with zero limits holding the entry.
        ``record_id`` carries the new entry's id.
        """
        owner, month, rejected = self._checked("add_manual_entry", owner_id, month)
        if rejected is not None:
            return rejected
        if not isinstance(entry, dict) or entry.get("amount") is None:
            return self._rejected(
                "add_manual_entry", InvalidMutationError("A manual entry needs an amount"),
            )

        path = self._path(owner, month)
        now = self._now()
        new_entry = {
            "id": generate_entry_id(),
            "description": entry.get("description") or "Manual entry",
            "amount": entry["amount"],
            "category": entry.get("category") or "Other",
            "date": entry.get("date"),
            "createdAt": now,
        }
        try:
            existing = await self._read(path, month)
            if existing is None:
                document = self._new_document(owner, month, now)
                document[MANUAL_ENTRIES_FIELD] = [new_entry]
                await self._call(
                    self._store.set_document(path, document),
                    f"Creating budget {month}",
                )
            else:
                await self._call(
                    self._store.array_union(
                        path, MANUAL_ENTRIES_FIELD, [new_entry], fields={"updatedAt": now},
                    ),
                    f"Adding manual entry to budget {month}",
                )
        except StorageError as e:
            self._audit.log_write_failed(owner, Domain.BUDGET, "add_manual_entry", e)
            return MutationResult.failed(str(e))

        self._forget(owner, month)
        self._audit.log_record_updated(owner, Domain.BUDGET, path.id, [MANUAL_ENTRIES_FIELD])
        return MutationResult.ok(record_id=new_entry["id"], count=1)

    async def delete_manual_entry(
        self,
        owner_id: Union[str, int],
        month: str,
        entry_id: str,
    ) -> MutationResult:
        """Remove one manual entry; "not found" when the month or the entry is absent."""
        owner, month, rejected = self._checked("delete_manual_entry", owner_id, month)
        if rejected is not None:
            return rejected
        try:
            entry_id = self._validator.record_id(entry_id)
        except InvalidMutationError as e:
            return self._rejected("delete_manual_entry", e)

        path = self._path(owner, month)
        try:
            existing = await self._read(path, month)
            entries = (existing or {}).get(MANUAL_ENTRIES_FIELD) or []
            match = next(
                (e for e in entries if isinstance(e, dict) and e.get("id") == entry_id), None,
            )
            if match is None:
                return MutationResult.failed("not found", record_id=entry_id)
            await self._call(
                self._store.array_remove(
                    path, MANUAL_ENTRIES_FIELD, [match], fields={"updatedAt": self._now()},
                ),
                f"Removing manual entry from budget {month}",
            )
        except StorageError as e:
            self._audit.log_write_failed(owner, Domain.BUDGET, "delete_manual_entry", e)
            return MutationResult.failed(str(e), record_id=entry_id)

        self._forget(owner, month)
        self._audit.log_record_updated(owner, Domain.BUDGET, path.id, [MANUAL_ENTRIES_FIELD])
        return MutationResult.ok(record_id=entry_id, count=1)

    async def delete_budget(self, owner_id: Union[str, int], month: str) -> MutationResult:
        owner, month, rejected = self._checked("delete_budget", owner_id, month)
        if rejected is not None:
            return rejected

        path = self._path(owner, month)
        try:
            await self._call(self._store.delete_document(path), f"Deleting budget {month}")
        except StorageError as e:
            self._audit.log_write_failed(owner, Domain.BUDGET, "delete_budget", e)
            return MutationResult.failed(str(e), record_id=path.id)

        self._forget(owner, month)
        self._audit.log_record_deleted(owner, Domain.BUDGET, path.id)
        return MutationResult.ok(record_id=path.id)
