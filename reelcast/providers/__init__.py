"""Hosting provider capability and the publish step built on it."""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from typing import Sequence

from reelcast.core.config import Settings
from reelcast.core.errors import ConfigurationError, ProviderError, PublishError
from reelcast.core.logging import get_logger

from .base import (
    ProviderRef,
    ProviderResult,
    PublishOutcome,
    RemoteStatus,
    TranscodeState,
    UploadSession,
    UploadStatus,
    VideoProvider,
)
from .cloudflare import CloudflareStreamProvider
from .mux import MuxProvider


def build_primary_provider(settings: Settings) -> VideoProvider:
    secrets = settings.secrets
    if settings.primary_provider == "mux":
        if not secrets.mux_token_id or not secrets.mux_token_secret:
            raise ConfigurationError("Mux credentials not found; set REELCAST_MUX_TOKEN_ID and REELCAST_MUX_TOKEN_SECRET")
        return MuxProvider(
            token_id=secrets.mux_token_id,
            token_secret=secrets.mux_token_secret,
            base_url=settings.mux_api_url,
            video_quality=settings.mux_video_quality,
            cors_origin=settings.mux_cors_origin,
            timeout_s=settings.provider_timeout_s,
            upload_timeout_s=settings.upload_timeout_s,
        )
    raise ConfigurationError(f"Unsupported primary provider: {settings.primary_provider}")


def build_secondary_providers(settings: Settings) -> list[VideoProvider]:
    providers: list[VideoProvider] = []
    for name in settings.secondary_providers:
        if name == "cloudflare":
            if not settings.cloudflare_account_id or not settings.secrets.cloudflare_api_token:
                raise ConfigurationError("Cloudflare Stream needs REELCAST_CLOUDFLARE_ACCOUNT_ID and an API token")
            providers.append(
                CloudflareStreamProvider(
                    account_id=settings.cloudflare_account_id,
                    api_token=settings.secrets.cloudflare_api_token,
                    base_url=settings.cloudflare_api_url,
                    max_duration_s=settings.cloudflare_max_duration_s,
                    timeout_s=settings.provider_timeout_s,
                    upload_timeout_s=settings.upload_timeout_s,
                )
            )
        else:
            raise ConfigurationError(f"Unsupported secondary provider: {name}")
    return providers


async def publish_to(provider: VideoProvider, payload: bytes, *, content_type: str) -> ProviderResult:
    """Create an upload session on ``provider`` and push the bytes in one transfer."""
    try:
        session = await provider.create_upload_session()
        await provider.push_bytes(session.upload_target, payload, content_type=content_type)
    except ProviderError as exc:
        return ProviderResult(provider=provider.name, error=str(exc))
    return ProviderResult(
        provider=provider.name,
        ref=ProviderRef(session_id=session.session_id, asset_id=session.asset_id),
    )


async def publish(
    path: Path,
    primary: VideoProvider,
    secondaries: Sequence[VideoProvider] = (),
) -> PublishOutcome:
    """Publish ``path`` to the primary provider and, best effort, to every secondary.

    Raises:
        PublishError: The primary provider rejected the session or the upload.
    """
    logger = get_logger(component="publisher", file=path.name)
    payload = await asyncio.to_thread(path.read_bytes)
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

    primary_result = await publish_to(primary, payload, content_type=content_type)
    if not primary_result.ok:
        raise PublishError(primary_result.error or f"{primary.name}: upload failed")

    outcome = PublishOutcome(primary=primary_result)
    for provider in secondaries:
        result = await publish_to(provider, payload, content_type=content_type)
        if not result.ok:
            logger.warning("secondary_publish_failed", provider=provider.name, error=result.error)
        outcome.secondaries.append(result)
    return outcome


__all__ = [
    "CloudflareStreamProvider",
    "MuxProvider",
    "ProviderRef",
    "ProviderResult",
    "PublishOutcome",
    "RemoteStatus",
    "TranscodeState",
    "UploadSession",
    "UploadStatus",
    "VideoProvider",
    "build_primary_provider",
    "build_secondary_providers",
    "publish",
    "publish_to",
]
