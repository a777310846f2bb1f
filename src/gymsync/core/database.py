"""Async SQLAlchemy engine backing the SQL document store.

Provides:
- Base: Declarative base for all tables (documents)
- get_engine(): Lazily created async engine singleton
- get_session_factory(): async_sessionmaker bound to the engine
- init_db() / close_db(): lifespan hooks
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.gymsync.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs: dict = {"echo": False}
        if settings.DATABASE_URL.startswith("postgresql"):
            kwargs.update(pool_size=20, max_overflow=10)
        _engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    return _engine


class Base(DeclarativeBase):
    """Base class for persistence models."""


def get_session_factory(engine: AsyncEngine | None = None) -> async_sessionmaker[AsyncSession]:
    """Session factory with expire_on_commit disabled (documents are read after commit)."""
    return async_sessionmaker(engine or get_engine(), expire_on_commit=False)


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create tables if they don't exist. Alembic owns migrations in deployed environments."""
    # Import models so they register on Base.metadata
    from src.gymsync.store import models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
