"""
In-Memory Document Store

Dictionary-backed implementation of DocumentStoreInterface for local
development and tests. It follows the same observable rules as the
production backend where they matter to the cache layer:

- documents missing the ``order_by`` field are left out of ordered queries
- batches are all-or-nothing
- increments and array updates on a missing document fail with NotFoundError
- with ``indexed_fields`` set, predicates on any other field raise
  QueryNotServableError, like a backend without the supporting index
"""

import copy
from typing import Any, Iterable, Optional, Sequence

from src.models.records import Record
from src.services.storage.interface import (
    DocumentStoreInterface,
    FieldFilter,
    NotFoundError,
    QueryNotServableError,
    WriteKind,
    WriteOperation,
)
from src.services.storage.paths import CollectionPath, DocumentPath


class InMemoryDocumentStore(DocumentStoreInterface):
    """
    In-process document store.

    Args:
        indexed_fields: Fields that may carry query predicates.
            None means every field is queryable.
    """

    def __init__(self, indexed_fields: Optional[Iterable[str]] = None):
        self._documents: dict[tuple[str, ...], Record] = {}
        self._indexed_fields = set(indexed_fields) if indexed_fields is not None else None

    def _to_record(self, segments: tuple[str, ...]) -> Record:
        return {"id": segments[-1], **copy.deepcopy(self._documents[segments])}

    def _check_servable(self, filters: Sequence[FieldFilter]) -> None:
        if self._indexed_fields is None:
            return
        missing = sorted({f.field for f in filters if f.field not in self._indexed_fields})
        if missing:
            raise QueryNotServableError(
                f"The query requires an index on: {', '.join(missing)}"
            )

    async def get_document(self, path: DocumentPath) -> Optional[Record]:
        if path.segments not in self._documents:
            return None
        return self._to_record(path.segments)

    async def query_collection(
        self,
        collection: CollectionPath,
        filters: Sequence[FieldFilter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Record]:
        self._check_servable(filters)
        depth = len(collection.segments) + 1
        records = [
            self._to_record(segments)
            for segments in self._documents
            if len(segments) == depth and segments[:-1] == collection.segments
        ]
        records = [r for r in records if all(f.matches(r) for f in filters)]
        if order_by:
            records = [r for r in records if r.get(order_by) is not None]
            records.sort(key=lambda r: r[order_by], reverse=descending)
        if limit is not None:
            records = records[:limit]
        return records

    async def set_document(
        self,
        path: DocumentPath,
        data: Record,
        merge: bool = False,
    ) -> None:
        self._apply(WriteOperation(WriteKind.MERGE if merge else WriteKind.SET, path, data))

    async def delete_document(self, path: DocumentPath) -> None:
        self._documents.pop(path.segments, None)

    async def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        staged = dict(self._documents)
        for op in operations:
            self._apply(op, staged)
        self._documents = staged

    async def increment_field(
        self,
        path: DocumentPath,
        field_name: str,
        delta: float,
    ) -> None:
        document = self._existing(path)
        current = document.get(field_name)
        if not isinstance(current, (int, float)) or isinstance(current, bool):
            current = 0
        document[field_name] = current + delta

    async def array_union(
        self,
        path: DocumentPath,
        field_name: str,
        values: Sequence[Any],
        fields: Optional[Record] = None,
    ) -> None:
        document = self._existing(path)
        current = list(document.get(field_name) or [])
        for value in values:
            if value not in current:
                current.append(copy.deepcopy(value))
        document[field_name] = current
        document.update(copy.deepcopy(fields or {}))

    async def array_remove(
        self,
        path: DocumentPath,
        field_name: str,
        values: Sequence[Any],
        fields: Optional[Record] = None,
    ) -> None:
        document = self._existing(path)
        document[field_name] = [
            element for element in document.get(field_name) or [] if element not in values
        ]
        document.update(copy.deepcopy(fields or {}))

    def _existing(self, path: DocumentPath) -> Record:
        document = self._documents.get(path.segments)
        if document is None:
            raise NotFoundError(f"No document to update: {path}")
        return document

    def _apply(
        self,
        op: WriteOperation,
        documents: Optional[dict[tuple[str, ...], Record]] = None,
    ) -> None:
        documents = self._documents if documents is None else documents
        key = op.path.segments
        if op.kind == WriteKind.DELETE:
            documents.pop(key, None)
        elif op.kind == WriteKind.MERGE and key in documents:
            merged = copy.deepcopy(documents[key])
            merged.update(copy.deepcopy(op.data))
            documents[key] = merged
        else:
            documents[key] = copy.deepcopy(op.data)
