from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelcast.services.catalog import CatalogRepository


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


async def get_catalog(session: AsyncSession = Depends(get_session)) -> AsyncIterator[CatalogRepository]:
    yield CatalogRepository(session)


Catalog = Annotated[CatalogRepository, Depends(get_catalog)]


__all__ = ["get_session", "get_catalog", "Catalog"]
