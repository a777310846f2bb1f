"""Persistence model for the SQL document store.

One table holds every collection: members, contracts, payments, employees,
products, schedule and webhook_logs. The business body lives in a JSON
column; ``version`` is bumped on every write for optimistic concurrency.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.gymsync.core.database import Base


class DocumentModel(Base):
    """A single document within a named collection."""

    __tablename__ = "documents"
    __table_args__ = (Index("ix_documents_collection_created", "collection", "created_at"),)

    collection: Mapped[str] = mapped_column(String(100), primary_key=True)
    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
