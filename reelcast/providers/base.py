from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from reelcast.core.errors import ProviderError
from reelcast.core.logging import get_logger


@dataclass(slots=True)
class UploadSession:
    session_id: str
    upload_target: str
    asset_id: Optional[str] = None


@dataclass(slots=True)
class UploadStatus:
    asset_id: Optional[str]
    failed: bool = False
    detail: Optional[str] = None


class TranscodeState(str, enum.Enum):
    processing = "processing"
    ready = "ready"
    failed = "failed"


@dataclass(slots=True)
class RemoteStatus:
    state: TranscodeState
    playback_ref: Optional[str] = None
    detail: Optional[str] = None


class VideoProvider(ABC):
    """Capability exposed by every hosting provider the pipeline can publish to."""

    name: str

    @abstractmethod
    async def create_upload_session(self) -> UploadSession: ...

    @abstractmethod
    async def push_bytes(self, upload_target: str, payload: bytes, *, content_type: str) -> None: ...

    @abstractmethod
    async def resolve_upload(self, session_id: str) -> UploadStatus: ...

    @abstractmethod
    async def get_asset_status(self, asset_id: str) -> RemoteStatus: ...

    async def aclose(self) -> None:
        return None


class HttpVideoProvider(VideoProvider):
    """Shared httpx plumbing; subclasses only describe their endpoints."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float,
        upload_timeout_s: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = httpx.Timeout(timeout_s)
        self.upload_timeout = httpx.Timeout(upload_timeout_s, connect=timeout_s)
        self._client = httpx.AsyncClient(base_url=base_url, timeout=self.timeout, transport=transport)
        self.logger = get_logger(component="provider", provider=self.name)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self.logger.warning("provider_request_failed", method=method, path=exc.request.url.path, status_code=exc.response.status_code)
            raise ProviderError(
                self.name,
                f"{method} {exc.request.url.path} returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            self.logger.warning("provider_request_failed", method=method, error=repr(exc))
            raise ProviderError(self.name, f"{method} {url} failed: {exc!r}") from exc
        self.logger.debug("provider_request", method=method, path=response.request.url.path, status_code=response.status_code)
        return response

    async def _json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, url, **kwargs)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(self.name, f"{method} {url} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderError(self.name, f"{method} {url} returned unexpected payload")
        return payload


@dataclass(slots=True)
class ProviderRef:
    session_id: str
    asset_id: Optional[str] = None

    def as_dict(self) -> dict[str, Optional[str]]:
        return {"session_id": self.session_id, "asset_id": self.asset_id}


@dataclass(slots=True)
class ProviderResult:
    provider: str
    ref: Optional[ProviderRef] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.ref is not None and self.error is None


@dataclass(slots=True)
class PublishOutcome:
    primary: ProviderResult
    secondaries: list[ProviderResult] = field(default_factory=list)

    def provider_refs(self) -> dict[str, dict[str, Optional[str]]]:
        refs = {}
        for result in [self.primary, *self.secondaries]:
            if result.ok and result.ref is not None:
                refs[result.provider] = result.ref.as_dict()
        return refs

    @property
    def primary_asset_id(self) -> Optional[str]:
        return self.primary.ref.asset_id if self.primary.ref else None


__all__ = [
    "HttpVideoProvider",
    "ProviderRef",
    "ProviderResult",
    "PublishOutcome",
    "RemoteStatus",
    "TranscodeState",
    "UploadSession",
    "UploadStatus",
    "VideoProvider",
]
