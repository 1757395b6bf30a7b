"""
Mutation Coordinator

Commits writes to the remote store, then brings the local cache in line
before returning.

DESIGN DECISION: Patch on single update/delete, invalidate on insert.
- An update or delete has the same effect on EVERY cached list of the
  domain (map or filter by id), whichever query produced the list, so
  the cached lists are patched in place with no re-fetch.
- An insertion may or may not belong in a given filtered, sorted view,
  so every cached view of the domain+owner is dropped instead.
- Bulk deletes invalidate too: simpler and safe.

Bulk writes are chunked so no commit exceeds the per-commit limit. Chunks
commit sequentially; the first failure stops the run and is reported.
Chunks committed before it stay committed, and the cache is invalidated
so it never shows the pre-write state for them.
"""

import copy
from typing import Any, Iterable, Iterator, Optional, Sequence, TypeVar, Union

import structlog

from src.cache import settings_key
from src.models.records import ID_FIELD, Domain, MutationResult, Record
from src.mutations.base import RemoteWriter, generate_record_id
from src.services.storage import StorageError, WriteOperation
from src.validation import InvalidMutationError


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Consecutive slices of ``items`` of at most ``size`` elements."""
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]


class MutationCoordinator(RemoteWriter):
    """
    Creates, updates and deletes records of one owner and domain.

    Every method returns a MutationResult and never raises for remote or
    validation failures.
    """

    def __init__(self, *args: Any, max_batch_operations: int = 450, **kwargs: Any):
        super().__init__(*args, **kwargs)
        if max_batch_operations < 1:
            raise ValueError("max_batch_operations must be at least 1")
        self._max_batch = max_batch_operations

    @property
    def max_batch_operations(self) -> int:
        return self._max_batch

    async def _commit_chunked(
        self,
        owner: str,
        domain: Domain,
        operations: list[WriteOperation],
        operation: str,
    ) -> tuple[int, Optional[StorageError]]:
        """Commit in chunks. Returns (operations committed, error that stopped the run)."""
        committed = 0
        for index, chunk in enumerate(chunked(operations, self._max_batch)):
            try:
                await self._call(
                    self._store.commit_batch(chunk),
                    f"{operation} chunk {index + 1} ({len(chunk)} ops)",
                )
            except StorageError as e:
                self._audit.log_write_failed(owner, domain, operation, e, details={
                    "chunk": index + 1,
                    "committed": committed,
                    "total": len(operations),
                })
                return committed, e
            committed += len(chunk)
            logger.debug(
                "batch_chunk_committed",
                domain=domain.value,
                chunk=index + 1,
                size=len(chunk),
            )
        return committed, None

    def _prepare_create(self, owner: str, domain: Domain, record: Record, now: str) -> Record:
        document = dict(record)
        document[ID_FIELD] = str(document.get(ID_FIELD) or generate_record_id(domain))
        document["userId"] = owner
        document["createdAt"] = now
        document["updatedAt"] = now
        return document

    async def create_many(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        records: Iterable[Record],
    ) -> MutationResult:
        """
        Create records in chunked batch commits.

        Returns:
            success with ``count`` and the created ids in ``details["ids"]``,
            or failure with ``count`` set to what was committed before it
        """
        if self._disabled(owner_id):
            return self._not_configured()
        domain = Domain(domain)
        try:
            owner = self._validator.owner(owner_id)
            records = self._validator.records(records)
        except InvalidMutationError as e:
            return self._rejected("create_many", e)

        now = self._now()
        documents = [self._prepare_create(owner, domain, record, now) for record in records]
        operations = [
            WriteOperation.set(self._paths.document(owner, domain, doc[ID_FIELD]), doc)
            for doc in documents
        ]

        committed, error = await self._commit_chunked(owner, domain, operations, "create_many")
        if committed:
            self._invalidate(owner, domain)
        if error is not None:
            return MutationResult.failed(str(error), count=committed)

        self._audit.log_records_created(owner, domain, committed)
        ids = [doc[ID_FIELD] for doc in documents]
        return MutationResult.ok(
            count=committed,
            record_id=ids[0] if len(ids) == 1 else None,
            details={"ids": ids},
        )

    async def create(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        record: Record,
    ) -> MutationResult:
        """Create one record; ``record_id`` carries the (possibly generated) id."""
        return await self.create_many(owner_id, domain, [record])

    async def update(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        record_id: str,
        fields: Record,
    ) -> MutationResult:
        """Merge ``fields`` into the record, then patch every cached list holding it."""
        if self._disabled(owner_id):
            return self._not_configured()
        domain = Domain(domain)
        try:
            owner = self._validator.owner(owner_id)
            record_id = self._validator.record_id(record_id)
            fields = self._validator.fields(fields, record_id)
        except InvalidMutationError as e:
            return self._rejected("update", e)

        changes = {**fields, "updatedAt": self._now()}
        try:
            await self._call(
                self._store.set_document(
                    self._paths.document(owner, domain, record_id), changes, merge=True,
                ),
                f"Updating {domain.value}/{record_id}",
            )
        except StorageError as e:
            self._audit.log_write_failed(owner, domain, "update", e)
            return MutationResult.failed(str(e), record_id=record_id)

        self._patch(owner, domain, lambda records: [
            {**r, **copy.deepcopy(changes)} if r.get(ID_FIELD) == record_id else r
            for r in records
        ])
        self._audit.log_record_updated(owner, domain, record_id, list(fields))
        return MutationResult.ok(record_id=record_id)

    async def delete(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        record_id: str,
    ) -> MutationResult:
        """Delete the record, then filter it out of every cached list."""
        if self._disabled(owner_id):
            return self._not_configured()
        domain = Domain(domain)
        try:
            owner = self._validator.owner(owner_id)
            record_id = self._validator.record_id(record_id)
        except InvalidMutationError as e:
            return self._rejected("delete", e)

        try:
            await self._call(
                self._store.delete_document(self._paths.document(owner, domain, record_id)),
                f"Deleting {domain.value}/{record_id}",
            )
        except StorageError as e:
            self._audit.log_write_failed(owner, domain, "delete", e)
            return MutationResult.failed(str(e), record_id=record_id)

        self._patch(owner, domain, lambda records: [
            r for r in records if r.get(ID_FIELD) != record_id
        ])
        self._audit.log_record_deleted(owner, domain, record_id)
        return MutationResult.ok(record_id=record_id)

    async def delete_many(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        record_ids: Iterable[str],
    ) -> MutationResult:
        """Delete records in chunked batch commits, then invalidate the domain."""
        if self._disabled(owner_id):
            return self._not_configured()
        domain = Domain(domain)
        try:
            owner = self._validator.owner(owner_id)
            record_ids = self._validator.record_ids(record_ids)
        except InvalidMutationError as e:
            return self._rejected("delete_many", e)

        return await self._delete_ids(owner, domain, record_ids, wholesale=False)

    async def delete_all(
        self,
        owner_id: Union[str, int],
        domain: Domain,
    ) -> MutationResult:
        """
        Delete every record of the domain for this owner.

        Destructive and not reversible; confirming intent is the caller's job.
        """
        if self._disabled(owner_id):
            return self._not_configured()
        domain = Domain(domain)
        try:
            owner = self._validator.owner(owner_id)
        except InvalidMutationError as e:
            return self._rejected("delete_all", e)

        try:
            existing = await self._call(
                self._store.query_collection(self._paths.collection(owner, domain)),
                f"Listing {domain.value} for deletion",
            )
        except StorageError as e:
            self._audit.log_write_failed(owner, domain, "delete_all", e)
            return MutationResult.failed(str(e), count=0)

        record_ids = [str(r[ID_FIELD]) for r in existing if r.get(ID_FIELD)]
        if not record_ids:
            self._invalidate(owner, domain)
            return MutationResult.ok(count=0)
        return await self._delete_ids(owner, domain, record_ids, wholesale=True)

    async def _delete_ids(
        self,
        owner: str,
        domain: Domain,
        record_ids: list[str],
        wholesale: bool,
    ) -> MutationResult:
        operation = "delete_all" if wholesale else "delete_many"
        operations = [
            WriteOperation.delete(self._paths.document(owner, domain, record_id))
            for record_id in record_ids
        ]
        committed, error = await self._commit_chunked(owner, domain, operations, operation)
        if committed:
            self._invalidate(owner, domain)
        if error is not None:
            return MutationResult.failed(str(error), count=committed)

        self._audit.log_records_deleted(owner, domain, committed, wholesale=wholesale)
        return MutationResult.ok(count=committed)

    async def save_settings(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        fields: Record,
    ) -> MutationResult:
        """
        Merge ``fields`` into the owner's settings document for ``domain``.

        A cached copy of the document is updated in place; without one,
        the domain's cached state is dropped.
        """
        if self._disabled(owner_id):
            return self._not_configured()
        domain = Domain(domain)
        try:
            owner = self._validator.owner(owner_id)
            if not isinstance(fields, dict) or not fields:
                raise InvalidMutationError("At least one settings field is required")
        except InvalidMutationError as e:
            return self._rejected("save_settings", e)

        changes = {**fields, "userId": owner, "updatedAt": self._now()}
        try:
            await self._call(
                self._store.set_document(
                    self._paths.settings_document(owner, domain.value), changes, merge=True,
                ),
                f"Saving {domain.value} settings",
            )
        except StorageError as e:
            self._audit.log_write_failed(owner, domain, "save_settings", e)
            return MutationResult.failed(str(e))

        key = settings_key(domain, owner)
        lookup = self._cache.lookup(key)
        if lookup.hit and isinstance(lookup.payload, dict):
            self._cache.set(key, copy.deepcopy({**lookup.payload, **changes}))
        else:
            self._invalidate(owner, domain)
        self._audit.log_settings_saved(owner, domain.value, list(fields))
        return MutationResult.ok(record_id=domain.value)

    async def add_subrecord(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        parent_id: str,
        sub_collection: str,
        record: Record,
    ) -> MutationResult:
        """Create a record nested under ``parent_id`` (sub-records are not cached)."""
        if self._disabled(owner_id):
            return self._not_configured()
        domain = Domain(domain)
        try:
            owner = self._validator.owner(owner_id)
            parent_id = self._validator.record_id(parent_id)
            record = self._validator.records([record])[0]
        except InvalidMutationError as e:
            return self._rejected("add_subrecord", e)

        document = self._prepare_create(owner, domain, record, self._now())
        path = self._paths.subcollection(owner, domain, parent_id, sub_collection).document(
            document[ID_FIELD]
        )
        try:
            await self._call(
                self._store.set_document(path, document),
                f"Creating {path}",
            )
        except StorageError as e:
            self._audit.log_write_failed(owner, domain, "add_subrecord", e)
            return MutationResult.failed(str(e))

        return MutationResult.ok(record_id=document[ID_FIELD], count=1)
