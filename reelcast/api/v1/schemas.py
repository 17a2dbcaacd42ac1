from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    app: str
    version: str
    environment: str
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProviderRefModel(BaseModel):
    sessionId: Optional[str] = None
    assetId: Optional[str] = None


class MediaAttributesModel(BaseModel):
    duration: float
    width: int
    height: int
    size: int


class VideoModel(BaseModel):
    """One catalog record, shaped like the exported presentation document."""

    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    contentHash: str
    providerRefs: Dict[str, ProviderRefModel]
    playbackRef: Optional[str]
    placeholder: str
    previewRef: Optional[str]
    sourceRef: Optional[Dict[str, Any]]
    sourceFile: str
    mediaAttributes: MediaAttributesModel
    remoteState: str = Field(description="uploading | preparing | ready | errored")
    createdAt: Optional[str]


class VideoListResponse(BaseModel):
    videos: List[VideoModel]
