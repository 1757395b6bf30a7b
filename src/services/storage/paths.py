"""
Remote store addressing

    <root_collection>/<ownerId>/<domain collection>/<recordId>
    <root_collection>/<ownerId>/<domain collection>/<recordId>/<sub>/<subId>
    <root_collection>/<ownerId>/settings/<name>

Every record lives under exactly one owner.
"""

from dataclasses import dataclass
from typing import Union

from src.models.records import Domain, domain_spec


SETTINGS_COLLECTION = "settings"


def is_valid_segment(segment: object) -> bool:
    """True when ``segment`` can name one collection or document."""
    text = "" if segment is None else str(segment)
    return bool(text) and "/" not in text


def _check_segment(segment: str) -> str:
    if not is_valid_segment(segment):
        raise ValueError(f"Invalid path segment: {segment!r}")
    return str(segment)


@dataclass(frozen=True)
class CollectionPath:
    segments: tuple[str, ...]

    def document(self, doc_id: str) -> "DocumentPath":
        return DocumentPath(self.segments + (_check_segment(doc_id),))

    @property
    def name(self) -> str:
        return self.segments[-1]

    def __str__(self) -> str:
        return "/".join(self.segments)


@dataclass(frozen=True)
class DocumentPath:
    segments: tuple[str, ...]

    @property
    def id(self) -> str:
        return self.segments[-1]

    @property
    def parent(self) -> CollectionPath:
        return CollectionPath(self.segments[:-1])

    def collection(self, name: str) -> CollectionPath:
        return CollectionPath(self.segments + (_check_segment(name),))

    def __str__(self) -> str:
        return "/".join(self.segments)


class PathBuilder:
    """Builds owner-scoped paths under one root collection."""

    def __init__(self, root_collection: str = "expenseSight"):
        self._root = _check_segment(root_collection)

    @property
    def root_collection(self) -> str:
        return self._root

    def owner_document(self, owner_id: Union[str, int]) -> DocumentPath:
        return DocumentPath((self._root, _check_segment(str(owner_id))))

    def collection(self, owner_id: Union[str, int], domain: Domain) -> CollectionPath:
        return self.owner_document(owner_id).collection(domain_spec(domain).collection)

    def document(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        record_id: str,
    ) -> DocumentPath:
        return self.collection(owner_id, domain).document(record_id)

    def subcollection(
        self,
        owner_id: Union[str, int],
        domain: Domain,
        parent_id: str,
        sub_collection: str,
    ) -> CollectionPath:
        return self.document(owner_id, domain, parent_id).collection(sub_collection)

    def settings_document(self, owner_id: Union[str, int], name: str) -> DocumentPath:
        return self.owner_document(owner_id).collection(SETTINGS_COLLECTION).document(name)
