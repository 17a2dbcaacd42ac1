from __future__ import annotations

from fastapi import APIRouter, Request

from .schemas import HealthResponse


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health(request: Request) -> HealthResponse:
    settings = request.app.state.settings
    return HealthResponse(app=settings.app_name, version=settings.version, environment=settings.environment)


__all__ = ["router"]
