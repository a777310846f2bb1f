"""Document store abstract base class -- the system-of-record interface.

The sync engine consumes the system of record as an opaque document CRUD
service: fetch by id, insert, partial update, equality query by field and
ordered listing. Every document carries an integer ``version`` that
increments on each write so callers can detect concurrent modification.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class DocumentStoreError(Exception):
    """Base error for document store operations."""


class DocumentNotFoundError(DocumentStoreError):
    """The addressed document does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class VersionConflictError(DocumentStoreError):
    """A write carried an expected_version that no longer matches the stored one."""

    def __init__(self, collection: str, doc_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"{collection}/{doc_id} version conflict: expected {expected}, found {actual}"
        )
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual


class Document(BaseModel):
    """A stored document: id, JSON body and write version."""

    id: str
    collection: str
    data: dict[str, Any] = Field(default_factory=dict)
    version: int = 1

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class DocumentStore(ABC):
    """Abstract interface for the system of record.

    Methods:
        get: Fetch a document by id, None if absent.
        insert: Create a document, return it (id generated when not given).
        update: Merge fields into a document, optionally guarded by expected_version.
        find_by_field: First document whose field equals value.
        query: All documents matching equality filters.
        list_ordered: Documents ordered by a field, optionally limited.
        count: Number of documents matching equality filters.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Fetch a document by id."""
        ...

    @abstractmethod
    async def insert(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> Document:
        """Insert a new document and return it."""
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> Document:
        """Merge changes into a document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            VersionConflictError: If expected_version is given and stale.
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents whose fields equal every filter value."""
        ...

    @abstractmethod
    async def list_ordered(
        self,
        collection: str,
        order_by: str,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents ordered by a body field."""
        ...

    async def find_by_field(self, collection: str, field: str, value: Any) -> Document | None:
        """First document whose field equals value, None if none match."""
        matches = await self.query(collection, {field: value}, limit=1)
        return matches[0] if matches else None

    async def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        return len(await self.query(collection, filters))
