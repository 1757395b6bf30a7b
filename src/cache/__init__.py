"""
Cache Package

In-process entry cache sitting between the UI and the remote document
store, with structured keys and owner-scoped resets.
"""

from src.cache.entry_cache import CacheEntry, CacheLookup, CacheStats, EntryCache
from src.cache.keys import (
    CacheKey,
    CacheKeyPrefix,
    document_key,
    domain_prefix,
    normalize_owner_id,
    query_key,
    settings_key,
)
from src.cache.reset import reset_all, reset_owner

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheKeyPrefix",
    "CacheLookup",
    "CacheStats",
    "EntryCache",
    "document_key",
    "domain_prefix",
    "normalize_owner_id",
    "query_key",
    "reset_all",
    "reset_owner",
    "settings_key",
]
