from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, status

from reelcast.api import deps
from reelcast.db.models import RemoteState
from reelcast.services.catalog import record_to_document

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])


@router.get("", response_model=schemas.VideoListResponse)
async def list_videos(catalog: deps.Catalog, state: Optional[RemoteState] = None) -> schemas.VideoListResponse:
    records = await catalog.list(state=state)
    return schemas.VideoListResponse(videos=[schemas.VideoModel(**record_to_document(record)) for record in records])


@router.get("/{video_id}", response_model=schemas.VideoModel)
async def get_video(video_id: str, catalog: deps.Catalog) -> schemas.VideoModel:
    record = await catalog.get(video_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="video_not_found")
    return schemas.VideoModel(**record_to_document(record))


__all__ = ["router"]
