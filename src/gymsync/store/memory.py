"""In-memory document store for development and tests.

Bodies are normalized to JSON-compatible values on write so callers see the
same shapes (ISO date strings, plain lists) the SQL store returns.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any

from pydantic_core import to_jsonable_python

from src.gymsync.store.base import (
    Document,
    DocumentNotFoundError,
    DocumentStore,
    VersionConflictError,
)


class InMemoryDocumentStore(DocumentStore):
    """Dict-of-dicts document store; not shared across processes."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}

    def _bucket(self, collection: str) -> dict[str, Document]:
        return self._collections.setdefault(collection, {})

    @staticmethod
    def _copy(doc: Document) -> Document:
        return Document(
            id=doc.id,
            collection=doc.collection,
            data=copy.deepcopy(doc.data),
            version=doc.version,
        )

    async def get(self, collection: str, doc_id: str) -> Document | None:
        doc = self._bucket(collection).get(doc_id)
        return self._copy(doc) if doc else None

    async def insert(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> Document:
        doc_id = doc_id or uuid.uuid4().hex
        doc = Document(id=doc_id, collection=collection, data=to_jsonable_python(data), version=1)
        self._bucket(collection)[doc_id] = doc
        return self._copy(doc)

    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> Document:
        doc = self._bucket(collection).get(doc_id)
        if doc is None:
            raise DocumentNotFoundError(collection, doc_id)
        if expected_version is not None and expected_version != doc.version:
            raise VersionConflictError(collection, doc_id, expected_version, doc.version)

        doc.data.update(to_jsonable_python(changes))
        doc.version += 1
        return self._copy(doc)

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        wanted = to_jsonable_python(filters or {})
        results = [
            self._copy(doc)
            for doc in self._bucket(collection).values()
            if all(doc.data.get(k) == v for k, v in wanted.items())
        ]
        return results[:limit] if limit is not None else results

    async def list_ordered(
        self,
        collection: str,
        order_by: str,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        docs = sorted(
            self._bucket(collection).values(),
            key=lambda d: (d.data.get(order_by) is not None, str(d.data.get(order_by) or "")),
            reverse=descending,
        )
        results = [self._copy(d) for d in docs]
        return results[:limit] if limit is not None else results
