"""
Cache Key Namespace

Keys are structured values, not concatenated strings:

    CacheKey(domain=Domain.EXPENSES, owner_id="42", signature="2025-01-01||food|500")

Prefix matching compares the (domain, owner) pair structurally, so an
owner "4" never matches keys of owner "42" and one domain never matches
another whose name happens to share a prefix. The string encoding exists
only for logging and for stores that need a flat key.
"""

from dataclasses import dataclass
from typing import Union

from src.models.records import Domain, QueryFilters


SEPARATOR = ":"

SETTINGS_SIGNATURE = "settings"


@dataclass(frozen=True)
class CacheKeyPrefix:
    """All cached state of one domain for one owner."""

    domain: Domain
    owner_id: str

    def matches(self, key: "CacheKey") -> bool:
        return key.domain == self.domain and key.owner_id == self.owner_id

    def encode(self) -> str:
        return f"{self.domain.value}{SEPARATOR}{self.owner_id}"


@dataclass(frozen=True)
class CacheKey:
    """Cache key for one read: domain + owner + filter signature."""

    domain: Domain
    owner_id: str
    signature: str = ""

    @property
    def prefix(self) -> CacheKeyPrefix:
        return CacheKeyPrefix(self.domain, self.owner_id)

    def encode(self) -> str:
        return f"{self.prefix.encode()}{SEPARATOR}{self.signature}"

    def __str__(self) -> str:
        return self.encode()


def normalize_owner_id(owner_id: Union[str, int]) -> str:
    """Owner ids arrive as ints or strings; the namespace always uses strings."""
    return str(owner_id).strip()


def query_key(
    domain: Domain,
    owner_id: Union[str, int],
    filters: QueryFilters,
) -> CacheKey:
    return CacheKey(Domain(domain), normalize_owner_id(owner_id), filters.signature())


def settings_key(domain: Domain, owner_id: Union[str, int]) -> CacheKey:
    return CacheKey(Domain(domain), normalize_owner_id(owner_id), SETTINGS_SIGNATURE)


def domain_prefix(domain: Domain, owner_id: Union[str, int]) -> CacheKeyPrefix:
    return CacheKeyPrefix(Domain(domain), normalize_owner_id(owner_id))


def document_key(domain: Domain, owner_id: Union[str, int], document_id: str) -> CacheKey:
    """Key for one document read by id (e.g. a month's budget)."""
    return CacheKey(Domain(domain), normalize_owner_id(owner_id), f"doc{SEPARATOR}{document_id}")
