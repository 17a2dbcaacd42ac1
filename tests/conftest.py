import asyncio
import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from reelcast.core.config import get_settings
from reelcast.core.db import Base, create_engine
from reelcast.core.errors import ProviderError
from reelcast.db.models import AssetRecord, RemoteState
from reelcast.main import create_app
from reelcast.providers import RemoteStatus, TranscodeState, UploadSession, UploadStatus, VideoProvider

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default reelcast environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return
    db_path = tmp_path / "reelcast_test.db"

    for alias in ("MUX_TOKEN_ID", "MUX_TOKEN_SECRET", "REELCAST_DB_URL", "REELCAST_ENV"):
        monkeypatch.delenv(alias, raising=False)
    monkeypatch.setenv("REELCAST_ENVIRONMENT", "test")
    monkeypatch.setenv("REELCAST_LOG_LEVEL", "debug")
    monkeypatch.setenv("REELCAST_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("REELCAST_INTAKE_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("REELCAST_PREVIEW_DIR", str(tmp_path / "public" / "previews"))
    monkeypatch.setenv("REELCAST_CATALOG_EXPORT_PATH", str(tmp_path / "public" / "videos.json"))
    monkeypatch.setenv("REELCAST_DOWNLOAD_HISTORY_PATH", str(tmp_path / "data" / "download-history.json"))
    monkeypatch.setenv("REELCAST_MUX_TOKEN_ID", "test-token-id")
    monkeypatch.setenv("REELCAST_MUX_TOKEN_SECRET", "test-token-secret")
    monkeypatch.setenv("REELCAST_RECONCILE_DELAY_S", "0")

    get_settings.cache_clear()
    settings = get_settings()
    settings.intake_dir.mkdir(parents=True, exist_ok=True)
    engine = create_engine(settings)

    async def _setup() -> None:
        import reelcast.db.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_setup())

    yield

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


@pytest.fixture()
def settings(configure_environment):
    return get_settings()


@pytest.fixture()
def client(configure_environment):
    app = create_app()
    with TestClient(app) as client:
        yield client


class FakeProvider(VideoProvider):
    """In-memory provider whose remote lifecycle is driven by the test."""

    def __init__(self, name: str = "mux", *, sync_asset_ids: bool = False, fail_uploads: bool = False):
        self.name = name
        self.sync_asset_ids = sync_asset_ids
        self.fail_uploads = fail_uploads
        self.sessions: dict[str, Optional[str]] = {}
        self.failed_sessions: set[str] = set()
        self.assets: dict[str, RemoteStatus] = {}
        self.unreachable: set[str] = set()
        self.pushed: list[tuple[str, int, str]] = []
        self.status_queries: list[str] = []
        self.closed = False

    async def create_upload_session(self) -> UploadSession:
        if self.fail_uploads:
            raise ProviderError(self.name, "upload session refused", status_code=503)
        session_id = f"{self.name}-upload-{len(self.sessions) + 1}"
        asset_id = f"{self.name}-asset-{len(self.sessions) + 1}" if self.sync_asset_ids else None
        self.sessions[session_id] = asset_id
        return UploadSession(session_id=session_id, upload_target=f"https://upload.test/{session_id}", asset_id=asset_id)

    async def push_bytes(self, upload_target: str, payload: bytes, *, content_type: str) -> None:
        self.pushed.append((upload_target, len(payload), content_type))

    async def resolve_upload(self, session_id: str) -> UploadStatus:
        if session_id in self.unreachable:
            raise ProviderError(self.name, "connection reset")
        if session_id in self.failed_sessions:
            return UploadStatus(asset_id=None, failed=True, detail="errored")
        return UploadStatus(asset_id=self.sessions.get(session_id))

    async def get_asset_status(self, asset_id: str) -> RemoteStatus:
        self.status_queries.append(asset_id)
        if asset_id in self.unreachable:
            raise ProviderError(self.name, "connection reset")
        return self.assets.get(asset_id, RemoteStatus(state=TranscodeState.processing, detail="preparing"))

    async def aclose(self) -> None:
        self.closed = True

    # Test controls

    def assign_asset(self, session_id: str, asset_id: str) -> None:
        self.sessions[session_id] = asset_id

    def mark_ready(self, asset_id: str, playback_ref: str) -> None:
        self.assets[asset_id] = RemoteStatus(state=TranscodeState.ready, playback_ref=playback_ref)

    def mark_failed(self, asset_id: str) -> None:
        self.assets[asset_id] = RemoteStatus(state=TranscodeState.failed, detail="invalid_input")


@pytest.fixture(scope="session")
def generated_video_file(tmp_path_factory) -> Path:
    """
    Generates a 10 second 1920x1080 MP4 with a solid blue frame for probe and derivative tests.
    """
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not installed")
    video_path = tmp_path_factory.mktemp("data") / "test_video.mp4"

    command = [
        "ffmpeg",
        "-f", "lavfi",
        "-i", "color=c=blue:s=1920x1080:r=5",
        "-t", "10",
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-pix_fmt", "yuv420p",
        str(video_path)
    ]
    subprocess.run(command, check=True, capture_output=True)
    return video_path


def make_record(content_hash: str = "a" * 64, **overrides) -> AssetRecord:
    now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
    values = dict(
        id=uuid4().hex,
        content_hash=content_hash,
        title="Beach Day",
        source_file="beach_day.mp4",
        provider_refs={"mux": {"session_id": "up-1", "asset_id": None}},
        playback_ref=None,
        placeholder="#3366cc",
        preview_ref=f"previews/{content_hash}.mp4",
        source_ref=None,
        duration_s=10.0,
        width=1920,
        height=1080,
        size_bytes=4096,
        remote_state=RemoteState.uploading,
        created_at=now,
        updated_at=now,
    )
    values.update(overrides)
    return AssetRecord(**values)
