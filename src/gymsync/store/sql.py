"""SQL-backed document store using async SQLAlchemy.

Bodies are stored as JSON in the ``documents`` table. Equality filters are
pushed down to the database through JSON path extraction, so the same code
runs against PostgreSQL (asyncpg) and SQLite (aiosqlite).

Writes are compare-and-set on ``version``: an UPDATE only applies when the
row still carries the version that was read. Without an explicit
expected_version the merge is retried against the fresh row.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.gymsync.store.base import (
    Document,
    DocumentNotFoundError,
    DocumentStore,
    VersionConflictError,
)
from src.gymsync.store.models import DocumentModel

logger = structlog.get_logger(__name__)

_MERGE_ATTEMPTS = 5


def _to_document(model: DocumentModel) -> Document:
    return Document(
        id=model.id,
        collection=model.collection,
        data=dict(model.data or {}),
        version=model.version,
    )


def _field_equals(field: str, value: Any):
    """Build a JSON-path equality clause typed after the Python value."""
    element = DocumentModel.data[field]
    if value is None:
        return element.as_string().is_(None)
    if isinstance(value, bool):
        return element.as_boolean() == value
    if isinstance(value, int):
        return element.as_integer() == value
    if isinstance(value, float):
        return element.as_float() == value
    return element.as_string() == str(value)


class SQLDocumentStore(DocumentStore):
    """Document store over the ``documents`` table.

    Args:
        session_factory: async_sessionmaker producing AsyncSession objects.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, collection: str, doc_id: str) -> Document | None:
        async with self._session_factory() as session:
            model = await self._load(session, collection, doc_id)
            return _to_document(model) if model else None

    async def insert(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> Document:
        model = DocumentModel(
            collection=collection,
            id=doc_id or uuid.uuid4().hex,
            data=to_jsonable_python(data),
            version=1,
        )
        async with self._session_factory() as session:
            session.add(model)
            await session.commit()
        return _to_document(model)

    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> Document:
        normalized = to_jsonable_python(changes)

        for _ in range(_MERGE_ATTEMPTS):
            async with self._session_factory() as session:
                model = await self._load(session, collection, doc_id)
                if model is None:
                    raise DocumentNotFoundError(collection, doc_id)
                if expected_version is not None and model.version != expected_version:
                    raise VersionConflictError(collection, doc_id, expected_version, model.version)

                merged = {**(model.data or {}), **normalized}
                read_version = model.version
                result = await session.execute(
                    update(DocumentModel)
                    .where(
                        DocumentModel.collection == collection,
                        DocumentModel.id == doc_id,
                        DocumentModel.version == read_version,
                    )
                    .values(data=merged, version=read_version + 1)
                )
                await session.commit()

                if result.rowcount == 1:
                    return Document(
                        id=doc_id, collection=collection, data=merged, version=read_version + 1
                    )

                if expected_version is not None:
                    raise VersionConflictError(
                        collection, doc_id, expected_version, read_version + 1
                    )
                logger.debug("document_store.merge_retry", collection=collection, doc_id=doc_id)

        raise VersionConflictError(collection, doc_id, -1, -1)

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        stmt = select(DocumentModel).where(DocumentModel.collection == collection)
        for field, value in (filters or {}).items():
            stmt = stmt.where(_field_equals(field, value))
        stmt = stmt.order_by(DocumentModel.created_at, DocumentModel.id)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_document(m) for m in result.scalars().all()]

    async def list_ordered(
        self,
        collection: str,
        order_by: str,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        key = DocumentModel.data[order_by].as_string()
        stmt = (
            select(DocumentModel)
            .where(DocumentModel.collection == collection)
            .order_by(key.desc() if descending else key.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_to_document(m) for m in result.scalars().all()]

    @staticmethod
    async def _load(session: AsyncSession, collection: str, doc_id: str) -> DocumentModel | None:
        result = await session.execute(
            select(DocumentModel).where(
                DocumentModel.collection == collection,
                DocumentModel.id == doc_id,
            )
        )
        return result.scalar_one_or_none()
