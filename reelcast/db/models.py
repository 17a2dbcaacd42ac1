from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Enum, Float, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import BIGINT
from sqlalchemy.orm import Mapped, mapped_column

from reelcast.core.db import Base


class RemoteState(str, enum.Enum):
    uploading = "uploading"
    preparing = "preparing"
    ready = "ready"
    errored = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in {RemoteState.ready, RemoteState.errored}

    def can_advance_to(self, target: "RemoteState") -> bool:
        if self.is_terminal:
            return False
        if target is RemoteState.errored:
            return True
        return _FORWARD_ORDER[target] >= _FORWARD_ORDER[self]


_FORWARD_ORDER = {
    RemoteState.uploading: 0,
    RemoteState.preparing: 1,
    RemoteState.ready: 2,
}


class AssetRecord(Base):
    __tablename__ = "asset_records"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    content_hash: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    source_file: Mapped[str] = mapped_column(String(1024), nullable=False)
    provider_refs: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    playback_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    placeholder: Mapped[str] = mapped_column(Text, nullable=False)
    preview_ref: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    source_ref: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    duration_s: Mapped[float] = mapped_column(Float, nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BIGINT, nullable=False)
    remote_state: Mapped[RemoteState] = mapped_column(Enum(RemoteState), default=RemoteState.uploading, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def provider_ref(self, provider: str) -> dict[str, Any]:
        return dict((self.provider_refs or {}).get(provider) or {})

    def set_provider_asset_id(self, provider: str, asset_id: str) -> None:
        # JSON columns only detect reassignment, so build a fresh mapping.
        refs = {name: dict(ref) for name, ref in (self.provider_refs or {}).items()}
        refs.setdefault(provider, {})["asset_id"] = asset_id
        self.provider_refs = refs

    def advance_state(self, target: RemoteState, *, playback_ref: Optional[str] = None) -> bool:
        """Move the record forward in its remote lifecycle.

        Returns ``True`` when the state changed. Regressions and
        moves out of a terminal state are refused, and ``ready`` is only accepted together
        with a playback reference so that ``playback_ref`` is set exactly when ready.
        """
        current = RemoteState(self.remote_state)
        if not current.can_advance_to(target):
            return False
        if target is RemoteState.ready:
            if not playback_ref:
                return False
            self.playback_ref = playback_ref
        if current is target:
            return False
        self.remote_state = target
        self.updated_at = datetime.now(timezone.utc)
        return True


class CatalogLock(Base):
    __tablename__ = "catalog_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


__all__ = ["AssetRecord", "CatalogLock", "RemoteState"]
