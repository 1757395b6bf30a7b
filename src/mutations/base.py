"""Plumbing shared by every component that writes to the remote store."""

import secrets
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar, Union

from src.audit import AuditLogger
from src.cache import EntryCache, domain_prefix
from src.models.records import Domain, MutationResult, domain_spec
from src.services.storage import DocumentStoreInterface, PathBuilder, remote_call
from src.validation import InvalidMutationError, MutationValidator


T = TypeVar("T")

NOT_CONFIGURED = "storage not configured"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_record_id(domain: Domain) -> str:
    """Store-assigned id: ``<prefix>_<epoch millis>_<random>``."""
    return f"{domain_spec(domain).id_prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class RemoteWriter:
    """
    Base for write-side components.

    A store of None means the backend is not configured; subclasses
    answer every write with a failed MutationResult in that case.
    """

    def __init__(
        self,
        store: Optional[DocumentStoreInterface],
        cache: EntryCache,
        paths: Optional[PathBuilder] = None,
        timeout_seconds: float = 15.0,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[MutationValidator] = None,
        now: Optional[Callable[[], str]] = None,
    ):
        self._store = store
        self._cache = cache
        self._paths = paths or PathBuilder()
        self._timeout = timeout_seconds
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or MutationValidator()
        self._now = now or utc_now_iso

    @property
    def is_configured(self) -> bool:
        return self._store is not None

    def _disabled(self, owner_id: Union[str, int, None]) -> bool:
        """No store, or no owner to scope the write to."""
        return self._store is None or owner_id is None or not str(owner_id).strip()

    def _not_configured(self) -> MutationResult:
        return MutationResult.failed(NOT_CONFIGURED)

    def _rejected(self, operation: str, error: InvalidMutationError) -> MutationResult:
        self._audit.log_validation_failed(operation, str(error))
        return MutationResult.failed(str(error))

    async def _call(self, awaitable: Awaitable[T], operation: str) -> T:
        return await remote_call(awaitable, self._timeout, operation)

    def _invalidate(self, owner: str, domain: Domain) -> int:
        removed = self._cache.invalidate(domain_prefix(domain, owner))
        self._audit.log_cache_invalidated(owner, domain, removed)
        return removed

    def _patch(self, owner: str, domain: Domain, transform: Callable[[list], list]) -> int:
        patched = self._cache.patch_entries(domain_prefix(domain, owner), transform)
        self._audit.log_cache_patched(owner, domain, patched)
        return patched
