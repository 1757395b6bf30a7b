"""
Atomic counters

A counter field (a goal's ``currentAmount``, a tag's ``usageCount``) is
incremented server-side so concurrent increments from two sessions never
lose an update. The value written back into cached lists is the one READ
BACK from the store after the increment, never a locally computed sum.
"""

from typing import Any, Union

from src.models.records import ID_FIELD, Domain, MutationResult
from src.mutations.base import RemoteWriter
from src.services.storage import NotFoundError, StorageError
from src.validation import InvalidMutationError


class CounterService(RemoteWriter):
    """Server-side increments with cache reconciliation."""

    async def increment_field(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        record_id: str,
        field_name: str,
        delta: Any,
    ) -> MutationResult:
        """
        Atomically add ``delta`` to ``field_name`` of one record.

        A missing record is reported as "not found" without any write.
        After the increment the record is read back once; every cached
        list of the domain gets the read-back value for that record.

        Returns:
            success with ``new_value`` set to the authoritative value
        """
        if self._disabled(owner_id):
            return self._not_configured()
        domain = Domain(domain)
        try:
            owner = self._validator.owner(owner_id)
            record_id = self._validator.record_id(record_id)
            delta = self._validator.counter(field_name, delta)
        except InvalidMutationError as e:
            return self._rejected("increment_field", e)

        path = self._paths.document(owner, domain, record_id)
        try:
            existing = await self._call(
                self._store.get_document(path),
                f"Reading {domain.value}/{record_id}",
            )
            if existing is None:
                return MutationResult.failed("not found", record_id=record_id)
            await self._call(
                self._store.increment_field(path, field_name, delta),
                f"Incrementing {domain.value}/{record_id}.{field_name}",
            )
        except NotFoundError:
            return MutationResult.failed("not found", record_id=record_id)
        except StorageError as e:
            self._audit.log_write_failed(owner, domain, "increment_field", e)
            return MutationResult.failed(str(e), record_id=record_id)

        try:
            current = await self._call(
                self._store.get_document(path),
                f"Reading back {domain.value}/{record_id}",
            )
        except StorageError as e:
            # The increment landed but its result is unknown here
            self._invalidate(owner, domain)
            self._audit.log_counter_incremented(owner, domain, record_id, field_name, delta, None)
            return MutationResult.ok(record_id=record_id, details={"read_back_error": str(e)})

        if current is None:
            self._invalidate(owner, domain)
            self._audit.log_counter_incremented(owner, domain, record_id, field_name, delta, None)
            return MutationResult.ok(record_id=record_id)

        new_value = current.get(field_name)
        self._patch(owner, domain, lambda records: [
            {**r, field_name: new_value} if r.get(ID_FIELD) == record_id else r
            for r in records
        ])
        self._audit.log_counter_incremented(owner, domain, record_id, field_name, delta, new_value)
        return MutationResult.ok(record_id=record_id, new_value=new_value)
