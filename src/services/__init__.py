"""Services package."""

from src.services.storage import (
    DocumentStoreInterface,
    InMemoryDocumentStore,
    NotFoundError,
    PermissionDeniedError,
    QueryNotServableError,
    StorageError,
    StoreTimeoutError,
    StoreUnavailableError,
)

__all__ = [
    # Storage services
    "DocumentStoreInterface",
    "InMemoryDocumentStore",
    # Storage errors
    "NotFoundError",
    "PermissionDeniedError",
    "QueryNotServableError",
    "StorageError",
    "StoreTimeoutError",
    "StoreUnavailableError",
]
