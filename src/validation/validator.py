"""
Mutation Input Validation

Writes are checked BEFORE any remote call is attempted:
- owner id present
- record ids present and usable as path segments
- bulk operations carry at least one record
- partial updates carry at least one field and don't rewrite the id
- counter increments name a field and carry a finite number
- budget months are written YYYY-MM

IMPORTANT: Validation never fixes inputs silently. A rejected write comes
back to the caller as a failed MutationResult carrying the message.
"""

import math
from typing import Any, Iterable, Union

from src.models.records import ID_FIELD, MONTH_PATTERN, Record


class InvalidMutationError(ValueError):
    """A write was rejected before reaching the store."""
    pass


class MutationValidator:
    """Normalizes and checks the arguments of data-layer writes."""

    def owner(self, owner_id: Union[str, int, None]) -> str:
        owner = "" if owner_id is None else str(owner_id).strip()
        if not owner:
            raise InvalidMutationError("Owner id is required")
        if "/" in owner:
            raise InvalidMutationError(f"Owner id cannot contain '/': {owner!r}")
        return owner

    def record_id(self, record_id: Any) -> str:
        value = "" if record_id is None else str(record_id).strip()
        if not value:
            raise InvalidMutationError("Record id is required")
        if "/" in value:
            raise InvalidMutationError(f"Record id cannot contain '/': {value!r}")
        return value

    def record_ids(self, record_ids: Iterable[Any]) -> list[str]:
        ids = [self.record_id(record_id) for record_id in (record_ids or [])]
        if not ids:
            raise InvalidMutationError("At least one record id is required")
        return list(dict.fromkeys(ids))

    def records(self, records: Iterable[Record]) -> list[Record]:
        records = list(records or [])
        if not records:
            raise InvalidMutationError("At least one record is required")
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise InvalidMutationError(
                    f"Record at position {index} must be a mapping, got {type(record).__name__}"
                )
            if record.get(ID_FIELD) is not None:
                self.record_id(record[ID_FIELD])
        return records

    def fields(self, fields: Record, record_id: str) -> Record:
        if not isinstance(fields, dict) or not fields:
            raise InvalidMutationError("At least one field to update is required")
        if ID_FIELD in fields and str(fields[ID_FIELD]) != record_id:
            raise InvalidMutationError("The record id cannot be changed by an update")
        return dict(fields)

    def counter(self, field_name: str, delta: Any) -> float:
        if not field_name or not str(field_name).strip():
            raise InvalidMutationError("Counter field name is required")
        if field_name == ID_FIELD:
            raise InvalidMutationError("The id field cannot be incremented")
        if isinstance(delta, bool) or not isinstance(delta, (int, float)):
            raise InvalidMutationError(f"Increment must be a number, got {delta!r}")
        if not math.isfinite(delta):
            raise InvalidMutationError("Increment must be finite")
        return delta

    def month(self, month: Any) -> str:
        value = "" if month is None else str(month).strip()
        if not MONTH_PATTERN.match(value):
            raise InvalidMutationError(f"Month must be written YYYY-MM, got {month!r}")
        return value
