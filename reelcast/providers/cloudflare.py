from __future__ import annotations

from typing import Any

import httpx

from reelcast.core.errors import ProviderError

from .base import HttpVideoProvider, RemoteStatus, TranscodeState, UploadSession, UploadStatus


class CloudflareStreamProvider(HttpVideoProvider):
    """Cloudflare Stream direct creator uploads, used as a best-effort mirror."""

    name = "cloudflare"

    def __init__(
        self,
        *,
        account_id: str,
        api_token: str,
        base_url: str = "https://api.cloudflare.com/client/v4",
        max_duration_s: int = 3600,
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
        self.account_id = account_id
        self.max_duration_s = max_duration_s
        self._headers = {"Authorization": f"Bearer {api_token}"}

    async def create_upload_session(self) -> UploadSession:
        payload = await self._json(
            "POST",
            f"/accounts/{self.account_id}/stream/direct_upload",
            headers=self._headers,
            json={"maxDurationSeconds": self.max_duration_s},
        )
        result = _result(payload, self.name)
        uid, upload_url = result.get("uid"), result.get("uploadURL")
        if not uid or not upload_url:
            raise ProviderError(self.name, "direct_upload response missing uid or uploadURL")
        # Stream assigns the video uid up front, so the asset id is known synchronously.
        return UploadSession(session_id=uid, upload_target=upload_url, asset_id=uid)

    async def push_bytes(self, upload_target: str, payload: bytes, *, content_type: str) -> None:
        await self._request(
            "POST",
            upload_target,
            files={"file": ("upload", payload, content_type)},
            timeout=self.upload_timeout,
        )

    async def resolve_upload(self, session_id: str) -> UploadStatus:
        return UploadStatus(asset_id=session_id)

    async def get_asset_status(self, asset_id: str) -> RemoteStatus:
        payload = await self._json(
            "GET",
            f"/accounts/{self.account_id}/stream/{asset_id}",
            headers=self._headers,
        )
        result = _result(payload, self.name)
        status = result.get("status") or {}
        state = status.get("state")
        if state == "ready" and result.get("readyToStream", True):
            playback = result.get("playback") or {}
            return RemoteStatus(state=TranscodeState.ready, playback_ref=playback.get("hls") or asset_id)
        if state == "error":
            return RemoteStatus(state=TranscodeState.failed, detail=status.get("errReasonCode") or state)
        return RemoteStatus(state=TranscodeState.processing, detail=state)


def _result(payload: dict[str, Any], provider: str) -> dict[str, Any]:
    if payload.get("success") is False:
        errors = payload.get("errors") or []
        message = errors[0].get("message") if errors and isinstance(errors[0], dict) else "request failed"
        raise ProviderError(provider, message)
    result = payload.get("result")
    if not isinstance(result, dict):
        raise ProviderError(provider, "response missing result object")
    return result


__all__ = ["CloudflareStreamProvider"]
