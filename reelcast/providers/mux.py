from __future__ import annotations

from typing import Any

import httpx

from reelcast.core.errors import ProviderError

from .base import HttpVideoProvider, RemoteStatus, TranscodeState, UploadSession, UploadStatus

_FAILED_UPLOAD_STATES = {"errored", "cancelled", "timed_out"}


class MuxProvider(HttpVideoProvider):
    """Mux Video direct uploads (https://docs.mux.com/api-reference)."""

    name = "mux"

    def __init__(
        self,
        *,
        token_id: str,
        token_secret: str,
        base_url: str = "https://api.mux.com",
        video_quality: str = "plus",
        cors_origin: str = "*",
        timeout_s: float = 30.0,
        upload_timeout_s: float = 1800.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(
            base_url=base_url,
            timeout_s=timeout_s,
            upload_timeout_s=upload_timeout_s,
            transport=transport,
        )
        self._auth = httpx.BasicAuth(token_id, token_secret)
        self.video_quality = video_quality
        self.cors_origin = cors_origin

    async def create_upload_session(self) -> UploadSession:
        payload = await self._json(
            "POST",
            "/video/v1/uploads",
            auth=self._auth,
            json={
                "cors_origin": self.cors_origin,
                "new_asset_settings": {
                    "playback_policy": ["public"],
                    "video_quality": self.video_quality,
                },
            },
        )
        data = _data(payload, self.name)
        if not data.get("id") or not data.get("url"):
            raise ProviderError(self.name, "upload response missing id or url")
        return UploadSession(session_id=data["id"], upload_target=data["url"], asset_id=data.get("asset_id"))

    async def push_bytes(self, upload_target: str, payload: bytes, *, content_type: str) -> None:
        # The signed upload URL lives outside the API host and must not carry API credentials.
        await self._request(
            "PUT",
            upload_target,
            content=payload,
            headers={"Content-Type": content_type},
            timeout=self.upload_timeout,
        )

    async def resolve_upload(self, session_id: str) -> UploadStatus:
        data = _data(await self._json("GET", f"/video/v1/uploads/{session_id}", auth=self._auth), self.name)
        status = data.get("status")
        if status in _FAILED_UPLOAD_STATES:
            error = data.get("error") or {}
            return UploadStatus(asset_id=None, failed=True, detail=error.get("message") or status)
        return UploadStatus(asset_id=data.get("asset_id"))

    async def get_asset_status(self, asset_id: str) -> RemoteStatus:
        data = _data(await self._json("GET", f"/video/v1/assets/{asset_id}", auth=self._auth), self.name)
        status = data.get("status")
        if status == "ready":
            playback_ids = data.get("playback_ids") or []
            playback_ref = playback_ids[0].get("id") if playback_ids else None
            if playback_ref:
                return RemoteStatus(state=TranscodeState.ready, playback_ref=playback_ref)
            return RemoteStatus(state=TranscodeState.processing, detail="ready_without_playback_id")
        if status == "errored":
            errors = data.get("errors") or {}
            return RemoteStatus(state=TranscodeState.failed, detail=errors.get("type") or status)
        return RemoteStatus(state=TranscodeState.processing, detail=status)


def _data(payload: dict[str, Any], provider: str) -> dict[str, Any]:
    data = payload.get("data")
    if not isinstance(data, dict):
        raise ProviderError(provider, "response missing data object")
    return data


__all__ = ["MuxProvider"]
