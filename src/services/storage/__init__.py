"""
Storage Services Package

Provides the abstract document-store interface and its implementations.
Cloud Firestore is the production backend; the in-memory store backs local
development and tests.
"""

from src.services.storage.interface import (
    DocumentStoreInterface,
    FieldFilter,
    NotFoundError,
    PermissionDeniedError,
    QueryNotServableError,
    StorageError,
    StoreTimeoutError,
    StoreUnavailableError,
    WriteKind,
    WriteOperation,
)
from src.services.storage.memory import InMemoryDocumentStore
from src.services.storage.paths import CollectionPath, DocumentPath, PathBuilder, is_valid_segment
from src.services.storage.timeouts import remote_call

__all__ = [
    # Interface
    "DocumentStoreInterface",
    "FieldFilter",
    "WriteKind",
    "WriteOperation",
    # Paths
    "CollectionPath",
    "DocumentPath",
    "PathBuilder",
    "is_valid_segment",
    # Exceptions
    "NotFoundError",
    "PermissionDeniedError",
    "QueryNotServableError",
    "StorageError",
    "StoreTimeoutError",
    "StoreUnavailableError",
    # Implementations
    "InMemoryDocumentStore",
    "remote_call",
]
