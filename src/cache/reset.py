"""Owner-scoped cache reset (logout, destructive bulk operations)."""

from typing import Iterable, Optional, Union

from src.audit import AuditLogger
from src.cache.entry_cache import EntryCache
from src.cache.keys import domain_prefix, normalize_owner_id
from src.models.records import Domain


def reset_owner(
    cache: EntryCache,
    owner_id: Union[str, int],
    domains: Iterable[Domain] = tuple(Domain),
    audit_logger: Optional[AuditLogger] = None,
) -> int:
    """
    Drop every cached entry of ``owner_id`` in ``domains`` (all by default).

    Purely local; returns the number of entries removed. A blank owner id
    is a no-op.
    """
    owner = normalize_owner_id(owner_id)
    if not owner:
        return 0
    removed = sum(cache.invalidate(domain_prefix(domain, owner)) for domain in domains)
    if audit_logger:
        audit_logger.log_cache_reset(owner, removed)
    return removed


def reset_all(cache: EntryCache, audit_logger: Optional[AuditLogger] = None) -> int:
    """Clear the whole cache irrespective of owner."""
    removed = cache.clear()
    if audit_logger:
        audit_logger.log_cache_reset(None, removed)
    return removed
