"""
Query Execution Engine

DESIGN DECISION: Reads never raise to the UI.
The executor checks the entry cache, reads the remote store on a miss,
stores the result and returns it. When the store fails, the caller gets
the last good cached value for the same key (even if expired) or an
empty result. Arguments that cannot name a remote path (an owner or id
containing "/") get the empty result without a remote call.

Exactly one failure is retried: QueryNotServableError, raised when the
backend cannot run the filtered/sorted query (e.g. a missing composite
index). The retry drops the predicates, keeps ordering and cap, and
applies the date range in memory instead.

Category equality is never sent to the store; it is always applied
client-side, whichever path produced the records.

Payloads are deep-copied into and out of the cache. Callers own what
they get back and can edit it freely.
"""

import copy
from typing import Any, Optional, Union

from src.audit import AuditLogger
from src.cache import (
    CacheKey,
    EntryCache,
    document_key,
    normalize_owner_id,
    query_key,
    settings_key,
)
from src.models.records import Domain, DomainSpec, QueryFilters, Record, domain_spec
from src.services.storage import (
    DocumentPath,
    DocumentStoreInterface,
    FieldFilter,
    PathBuilder,
    QueryNotServableError,
    StorageError,
    is_valid_segment,
    remote_call,
)


class QueryExecutor:
    """
    Cached, degrade-gracefully reads against the document store.

    A store of None means the backend is not configured: every read
    returns its empty default without touching the cache.
    """

    def __init__(
        self,
        store: Optional[DocumentStoreInterface],
        cache: EntryCache,
        paths: Optional[PathBuilder] = None,
        timeout_seconds: float = 15.0,
        default_limit: int = 500,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._cache = cache
        self._paths = paths or PathBuilder()
        self._timeout = timeout_seconds
        self._default_limit = default_limit
        self._audit = audit_logger or AuditLogger()

    @property
    def is_configured(self) -> bool:
        return self._store is not None

    @property
    def default_limit(self) -> int:
        return self._default_limit

    def _owner(self, owner_id: Union[str, int, None]) -> str:
        """Normalized owner, or "" when reads for it must stay local."""
        owner = normalize_owner_id(owner_id) if owner_id is not None else ""
        if owner and not is_valid_segment(owner):
            self._audit.log_validation_failed("read", f"Owner id cannot contain '/': {owner!r}")
            return ""
        return owner

    def _segments_ok(self, operation: str, *segments: Any) -> bool:
        for segment in segments:
            if not is_valid_segment(segment):
                self._audit.log_validation_failed(operation, f"Invalid path segment: {segment!r}")
                return False
        return True

    async def query(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        filters: Optional[QueryFilters] = None,
        use_cache: bool = True,
    ) -> list[Record]:
        """
        Records of ``domain`` owned by ``owner_id`` matching ``filters``.

        Args:
            owner_id: Owner namespace
            domain: Record domain
            filters: Date range, category and cap; defaults to an
                unfiltered read capped at the default limit
            use_cache: False forces a remote read (the result is still cached)

        Returns:
            Matching records in the domain's order; an empty list when
            the backend is unconfigured or failed with nothing cached
        """
        owner = self._owner(owner_id)
        if self._store is None or not owner:
            return []
        domain = Domain(domain)
        filters = filters or QueryFilters(limit_count=self._default_limit)
        key = query_key(domain, owner, filters)

        lookup = self._cache.lookup(key)
        if use_cache and lookup.hit:
            self._audit.log_query_executed(owner, domain, len(lookup.payload), from_cache=True)
            return copy.deepcopy(lookup.payload)
        last_good = lookup.payload if lookup.hit else lookup.stale_payload
        has_last_good = lookup.hit or lookup.had_stale

        try:
            records = await self._read(owner, domain, filters)
        except StorageError as e:
            self._audit.log_query_failed(owner, domain, e, served_stale=has_last_good)
            return copy.deepcopy(last_good) if has_last_good else []

        self._cache.set(key, copy.deepcopy(records))
        self._audit.log_query_executed(owner, domain, len(records), from_cache=False)
        return records

    def _native_filters(self, spec: DomainSpec, filters: QueryFilters) -> list[FieldFilter]:
        native = []
        if filters.start_date:
            native.append(FieldFilter(spec.date_field, ">=", filters.start_date))
        if filters.end_date:
            native.append(FieldFilter(spec.date_field, "<=", filters.end_date))
        return native

    async def _read(
        self,
        owner: str,
        domain: Domain,
        filters: QueryFilters,
    ) -> list[Record]:
        spec = domain_spec(domain)
        collection = self._paths.collection(owner, domain)
        native = self._native_filters(spec, filters)

        try:
            records = await remote_call(
                self._store.query_collection(
                    collection,
                    filters=native,
                    order_by=spec.order_field,
                    descending=spec.descending,
                    limit=filters.limit_count,
                ),
                self._timeout,
                f"Querying {domain.value}",
            )
        except QueryNotServableError as e:
            if not native:
                raise
            self._audit.log_query_fallback(owner, domain, str(e))
            records = await remote_call(
                self._store.query_collection(
                    collection,
                    order_by=spec.order_field,
                    descending=spec.descending,
                    limit=filters.limit_count,
                ),
                self._timeout,
                f"Querying {domain.value} (unfiltered)",
            )
            records = [r for r in records if filters.matches_range(r, spec.date_field)]

        return [r for r in records if filters.matches_category(r)]

    async def read_record(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        record_id: str,
    ) -> Optional[Record]:
        """
        One record by id, uncached, for callers that act on the answer.

        Returns:
            The record, or None when it does not exist

        Raises:
            StorageError: If the store could not answer
        """
        owner = self._owner(owner_id)
        if self._store is None or not owner or not record_id:
            return None
        if not self._segments_ok("read_record", record_id):
            return None
        domain = Domain(domain)
        return await remote_call(
            self._store.get_document(self._paths.document(owner, domain, record_id)),
            self._timeout,
            f"Reading {domain.value}/{record_id}",
        )

    async def get_record(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        record_id: str,
    ) -> Optional[Record]:
        """One record by id, uncached. None when absent or unreadable."""
        try:
            return await self.read_record(owner_id, domain, record_id)
        except StorageError as e:
            self._audit.log_query_failed(self._owner(owner_id), Domain(domain), e, served_stale=False)
            return None

    async def _cached_document(
        self,
        owner: str,
        domain: Domain,
        key: CacheKey,
        path: DocumentPath,
        default: Any,
        use_cache: bool,
        operation: str,
    ) -> Any:
        lookup = self._cache.lookup(key)
        if use_cache and lookup.hit:
            return default if lookup.payload is None else copy.deepcopy(lookup.payload)
        last_good = lookup.payload if lookup.hit else lookup.stale_payload
        has_last_good = lookup.hit or lookup.had_stale

        try:
            document = await remote_call(self._store.get_document(path), self._timeout, operation)
        except StorageError as e:
            self._audit.log_query_failed(owner, domain, e, served_stale=has_last_good)
            if has_last_good and last_good is not None:
                return copy.deepcopy(last_good)
            return default

        self._cache.set(key, copy.deepcopy(document))
        return default if document is None else document

    async def get_settings_document(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        default: Any = None,
        use_cache: bool = True,
    ) -> Any:
        """
        The owner's settings document for ``domain`` (budget, notifications).

        A missing document is cached as such, so repeated reads of an
        unset document stay local. ``default`` is returned for a missing
        document, never cached.
        """
        owner = self._owner(owner_id)
        if self._store is None or not owner:
            return default
        domain = Domain(domain)
        return await self._cached_document(
            owner,
            domain,
            settings_key(domain, owner),
            self._paths.settings_document(owner, domain.value),
            default,
            use_cache,
            f"Reading {domain.value} settings",
        )

    async def get_document(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        document_id: str,
        use_cache: bool = True,
    ) -> Optional[Record]:
        """
        One document of ``domain`` by id, cached like a query result.

        Absence is cached too (as None), so a month without a budget is
        not re-read on every visit.
        """
        owner = self._owner(owner_id)
        if self._store is None or not owner or not document_id:
            return None
        if not self._segments_ok("get_document", document_id):
            return None
        domain = Domain(domain)
        return await self._cached_document(
            owner,
            domain,
            document_key(domain, owner, document_id),
            self._paths.document(owner, domain, document_id),
            None,
            use_cache,
            f"Reading {domain.value}/{document_id}",
        )

    async def list_subrecords(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        parent_id: str,
        sub_collection: str,
        order_by: Optional[str] = "createdAt",
        descending: bool = True,
    ) -> list[Record]:
        """Records nested under one parent record (e.g. goal contributions), uncached."""
        owner = self._owner(owner_id)
        if self._store is None or not owner or not parent_id:
            return []
        if not self._segments_ok("list_subrecords", parent_id, sub_collection):
            return []
        domain = Domain(domain)
        try:
            return await remote_call(
                self._store.query_collection(
                    self._paths.subcollection(owner, domain, parent_id, sub_collection),
                    order_by=order_by,
                    descending=descending,
                ),
                self._timeout,
                f"Querying {domain.value}/{parent_id}/{sub_collection}",
            )
        except StorageError as e:
            self._audit.log_query_failed(owner, domain, e, served_stale=False)
            return []
