"""
Cloud Firestore Storage Implementation

DESIGN DECISION: Firestore is the production backend because:
1. Records are naturally owner-scoped documents and sub-collections
2. Server-side increments avoid read-modify-write races on counters
3. Batched writes give per-chunk atomicity for bulk operations

TRADEOFFS:
- A range filter combined with an ordering on another field needs a
  composite index; without it the query fails with FAILED_PRECONDITION.
  We translate that into QueryNotServableError and let the read path
  fall back to an unfiltered read.
- A batch holds at most 500 writes; callers chunk below that.

All google-api-core errors are translated into the storage exception
hierarchy so nothing above this module depends on Google types.
"""

from typing import Any, Optional, Sequence

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter as NativeFieldFilter
from google.oauth2.service_account import Credentials
from tenacity import (
    AsyncRetrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import FirestoreSettings, get_settings
from src.models.records import Record
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
from src.services.storage.paths import CollectionPath, DocumentPath


FIRESTORE_SCOPES = [
    "https://www.googleapis.com/auth/datastore",
]


def translate_error(error: Exception, operation: str) -> StorageError:
    """Map a Firestore/google-api-core error onto the storage exception hierarchy."""
    if isinstance(error, StorageError):
        return error
    message = f"{operation} failed: {error}"
    if isinstance(error, google_exceptions.FailedPrecondition):
        return QueryNotServableError(message)
    if isinstance(error, google_exceptions.NotFound):
        return NotFoundError(message)
    if isinstance(error, (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated)):
        return PermissionDeniedError(message)
    if isinstance(error, google_exceptions.DeadlineExceeded):
        return StoreTimeoutError(message)
    if isinstance(error, (
        google_exceptions.ServiceUnavailable,
        google_exceptions.InternalServerError,
        google_exceptions.ResourceExhausted,
        google_exceptions.Aborted,
    )):
        return StoreUnavailableError(message)
    return StorageError(message)


class FirestoreClient:
    """
    Low-level Firestore client wrapper.

    Handles authentication and provides retry logic for connecting. The
    connect retry is async, so its backoff never blocks the event loop.

    Args:
        settings: Firestore settings (defaults to get_settings().firestore)
        client: An already built AsyncClient (emulator, tests)
    """

    def __init__(
        self,
        settings: Optional[FirestoreSettings] = None,
        client: Optional[firestore.AsyncClient] = None,
    ):
        self._client = client
        self._settings = settings or get_settings().firestore

    @property
    def settings(self) -> FirestoreSettings:
        return self._settings

    @retry(
        retry=retry_if_exception_type(StoreUnavailableError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def connect(self) -> firestore.AsyncClient:
        """
        Create the Firestore client.

        Uses service account credentials when a credentials file is
        configured, application default credentials otherwise.
        """
        if self._client is None:
            if not self._settings.is_configured:
                raise StorageError("Firestore project id is not configured")
            try:
                credentials = None
                if self._settings.credentials_path:
                    credentials = Credentials.from_service_account_file(
                        self._settings.credentials_path,
                        scopes=FIRESTORE_SCOPES,
                    )
                self._client = firestore.AsyncClient(
                    project=self._settings.project_id,
                    credentials=credentials,
                    database=self._settings.database,
                )
            except FileNotFoundError:
                raise StorageError(
                    f"Firestore credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StoreUnavailableError(f"Failed to connect to Firestore: {e}")

        return self._client

    async def collection(self, path: CollectionPath):
        return (await self.connect()).collection(*path.segments)

    async def document(self, path: DocumentPath):
        return (await self.connect()).document(*path.segments)


class FirestoreDocumentStore(DocumentStoreInterface):
    """
    Firestore implementation of the document store.

    Idempotent writes (set, merge, delete, array union/remove, batch
    commits of those) are retried on transient failures. Increments are
    never retried, since a retry after an unacknowledged success would
    count twice.
    """

    def __init__(
        self,
        client: Optional[FirestoreClient] = None,
        write_retry_attempts: Optional[int] = None,
    ):
        self._client = client or FirestoreClient()
        self._write_attempts = write_retry_attempts or get_settings().data.write_retry_attempts

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(StoreUnavailableError),
            stop=stop_after_attempt(self._write_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=4),
            reraise=True,
        )

    async def get_document(self, path: DocumentPath) -> Optional[Record]:
        try:
            snapshot = await (await self._client.document(path)).get()
        except Exception as e:
            raise translate_error(e, f"Reading {path}")
        if not snapshot.exists:
            return None
        return {"id": snapshot.id, **(snapshot.to_dict() or {})}

    async def query_collection(
        self,
        collection: CollectionPath,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Record]:
        try:
            query = await self._client.collection(collection)
            for f in filters:
                query = query.where(filter=NativeFieldFilter(f.field, f.op, f.value))
            if order_by:
                direction = (
                    firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
                )
                query = query.order_by(order_by, direction=direction)
            if limit is not None:
                query = query.limit(limit)
            snapshots = await query.get()
        except Exception as e:
            raise translate_error(e, f"Querying {collection}")
        return [{"id": snap.id, **(snap.to_dict() or {})} for snap in snapshots]

    async def set_document(
        self,
        path: DocumentPath,
        data: Record,
        merge: bool = False,
    ) -> None:
        async for attempt in self._retrying():
            with attempt:
                try:
                    await (await self._client.document(path)).set(data, merge=merge)
                except Exception as e:
                    raise translate_error(e, f"Writing {path}")

    async def delete_document(self, path: DocumentPath) -> None:
        async for attempt in self._retrying():
            with attempt:
                try:
                    await (await self._client.document(path)).delete()
                except Exception as e:
                    raise translate_error(e, f"Deleting {path}")

    async def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        async for attempt in self._retrying():
            with attempt:
                try:
                    db = await self._client.connect()
                    batch = db.batch()
                    for op in operations:
                        ref = db.document(*op.path.segments)
                        if op.kind == WriteKind.DELETE:
                            batch.delete(ref)
                        else:
                            batch.set(ref, op.data, merge=op.kind == WriteKind.MERGE)
                    await batch.commit()
                except Exception as e:
                    raise translate_error(e, f"Committing batch of {len(operations)}")

    async def increment_field(
        self,
        path: DocumentPath,
        field_name: str,
        delta: float,
    ) -> None:
        try:
            ref = await self._client.document(path)
            await ref.update({field_name: firestore.Increment(delta)})
        except Exception as e:
            raise translate_error(e, f"Incrementing {field_name} on {path}")

    async def _update_array(
        self,
        path: DocumentPath,
        field_name: str,
        transform: Any,
        fields: Optional[Record],
        operation: str,
    ) -> None:
        async for attempt in self._retrying():
            with attempt:
                try:
                    ref = await self._client.document(path)
                    await ref.update({**(fields or {}), field_name: transform})
                except Exception as e:
                    raise translate_error(e, f"{operation} {field_name} on {path}")

    async def array_union(
        self,
        path: DocumentPath,
        field_name: str,
        values: Sequence[Any],
        fields: Optional[Record] = None,
    ) -> None:
        await self._update_array(
            path, field_name, firestore.ArrayUnion(list(values)), fields, "Adding to",
        )

    async def array_remove(
        self,
        path: DocumentPath,
        field_name: str,
        values: Sequence[Any],
        fields: Optional[Record] = None,
    ) -> None:
        await self._update_array(
            path, field_name, firestore.ArrayRemove(list(values)), fields, "Removing from",
        )
