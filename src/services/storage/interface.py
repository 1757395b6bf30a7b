"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for the remote store.
This allows us to:
1. Run against Cloud Firestore in production
2. Use in-memory storage for development and testing
3. Keep the cache and write-coordination logic backend-agnostic

Adapters translate their native errors into the exceptions defined here.
In particular, "this filtered/sorted query needs an index that doesn't
exist" becomes QueryNotServableError, which is the only error the read
path ever retries.
"""

import operator
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

from src.models.records import Record
from src.services.storage.paths import CollectionPath, DocumentPath


_COMPARATORS = {
    "==": operator.eq,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class FieldFilter:
    """A native equality/range predicate on one field."""

    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _COMPARATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    @property
    def is_range(self) -> bool:
        return self.op != "=="

    def matches(self, record: Record) -> bool:
        if self.field not in record or record[self.field] is None:
            return False
        try:
            return _COMPARATORS[self.op](record[self.field], self.value)
        except TypeError:
            return False


class WriteKind(str, Enum):
    SET = "set"
    MERGE = "merge"
    DELETE = "delete"


@dataclass(frozen=True)
class WriteOperation:
    """One intent inside a batch commit."""

    kind: WriteKind
    path: DocumentPath
    data: Record = field(default_factory=dict)

    @classmethod
    def set(cls, path: DocumentPath, data: Record) -> "WriteOperation":
        return cls(WriteKind.SET, path, dict(data))

    @classmethod
    def merge(cls, path: DocumentPath, data: Record) -> "WriteOperation":
        return cls(WriteKind.MERGE, path, dict(data))

    @classmethod
    def delete(cls, path: DocumentPath) -> "WriteOperation":
        return cls(WriteKind.DELETE, path)


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the remote document store.

    Any backend (Firestore, in-memory, ...) must implement these methods.
    Documents come back as dictionaries carrying their id under ``"id"``.
    """

    @abstractmethod
    async def get_document(self, path: DocumentPath) -> Optional[Record]:
        """
        Read one document.

        Returns:
            The document if it exists, None otherwise
        """
        pass

    @abstractmethod
    async def query_collection(
        self,
        collection: CollectionPath,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Record]:
        """
        Read documents of a collection.

        Args:
            collection: Collection to read
            filters: Native predicates, all of which must hold
            order_by: Field to sort on
            descending: Sort direction
            limit: Maximum number of documents

        Raises:
            QueryNotServableError: If the backend cannot run this
                filter/ordering combination as requested
        """
        pass

    @abstractmethod
    async def set_document(
        self,
        path: DocumentPath,
        data: Record,
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document; with ``merge`` only the given fields change."""
        pass

    @abstractmethod
    async def delete_document(self, path: DocumentPath) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        pass

    @abstractmethod
    async def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        """
        Apply all operations atomically.

        Callers keep batches within the backend's per-commit limit.
        """
        pass

    @abstractmethod
    async def increment_field(
        self,
        path: DocumentPath,
        field_name: str,
        delta: float,
    ) -> None:
        """
        Atomically add ``delta`` to a numeric field, server-side.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        pass

    @abstractmethod
    async def array_union(
        self,
        path: DocumentPath,
        field_name: str,
        values: Sequence[Any],
        fields: Optional[Record] = None,
    ) -> None:
        """
        Add each of ``values`` to an array field unless an equal element is
        already there, and set ``fields`` alongside, in one atomic update.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        pass

    @abstractmethod
    async def array_remove(
        self,
        path: DocumentPath,
        field_name: str,
        values: Sequence[Any],
        fields: Optional[Record] = None,
    ) -> None:
        """
        Remove every element equal to one of ``values`` from an array field,
        and set ``fields`` alongside, in one atomic update.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class QueryNotServableError(StorageError):
    """The backend cannot run the filtered/sorted query as requested."""
    pass


class StoreUnavailableError(StorageError):
    """Could not reach the storage backend."""
    pass


class StoreTimeoutError(StoreUnavailableError):
    """The storage backend did not answer in time."""
    pass


class PermissionDeniedError(StorageError):
    """The backend refused access to the requested path."""
    pass
