from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import Settings


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""


def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(settings.database_url, echo=False, future=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def ensure_schema(engine: AsyncEngine) -> None:
    """Create missing catalog tables. Existing tables and rows are left untouched."""
    import reelcast.db.models  # noqa: F401 - ensure models are imported for metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncIterator[dict[str, object]]:
    engine = create_engine(settings)
    await ensure_schema(engine)
    session_factory = create_session_factory(engine)
    state: dict[str, object] = {"engine": engine, "session_factory": session_factory}
    try:
        yield state
    finally:
        await engine.dispose()


__all__ = ["Base", "create_engine", "create_session_factory", "ensure_schema", "lifespan"]
