from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from reelcast.api.v1 import get_api_router
from reelcast.core.config import get_settings
from reelcast.core.db import create_engine, create_session_factory, ensure_schema
from reelcast.core.logging import configure_logging


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, log_format=settings.log_format)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await ensure_schema(engine)
        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = session_factory
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
