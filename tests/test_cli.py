from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console

from reelcast import cli
from reelcast.core.db import lifespan
from reelcast.db.models import CatalogLock
from reelcast.services import orchestrator as orchestrator_module
from reelcast.services.catalog import CatalogRepository
from reelcast.services.reconciler import LEASE_NAME
from tests.conftest import make_record


def test_no_command_prints_help_and_exits(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 1
    assert "process" in capsys.readouterr().out


def test_export_writes_catalog_document(settings, tmp_path):
    async def seed():
        async with lifespan(settings) as state:
            async with state["session_factory"]() as session:
                await CatalogRepository(session).add(make_record("a" * 64, title="Exported"))

    asyncio.run(seed())
    target = tmp_path / "site" / "videos.json"

    cli.main(["export", "--output", str(target)])

    payload = json.loads(target.read_text())
    assert [video["title"] for video in payload["videos"]] == ["Exported"]


def test_status_lists_records(settings, capsys, monkeypatch):
    monkeypatch.setattr(cli, "console", Console(width=200))

    async def seed():
        async with lifespan(settings) as state:
            async with state["session_factory"]() as session:
                await CatalogRepository(session).add(make_record("a" * 64, title="Listed"))

    asyncio.run(seed())
    cli.main(["status"])
    assert "Listed" in capsys.readouterr().out


def test_process_fails_fast_without_media_tools(settings, monkeypatch):
    monkeypatch.setattr(orchestrator_module.shutil, "which", lambda name: None)
    clip = settings.intake_dir / "clip.mp4"
    clip.write_bytes(b"\x00")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["process"])
    assert excinfo.value.code == 1
    assert clip.exists()


def test_process_fails_fast_without_credentials(settings, monkeypatch):
    monkeypatch.setattr(orchestrator_module.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(settings.secrets, "mux_token_secret", None)
    clip = settings.intake_dir / "clip.mp4"
    clip.write_bytes(b"\x00")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["process"])
    assert excinfo.value.code == 1
    assert clip.exists()


def test_reconcile_exits_when_lease_is_held(settings):
    async def hold_lease():
        async with lifespan(settings) as state:
            async with state["session_factory"]() as session:
                now = datetime.now(timezone.utc)
                session.add(CatalogLock(name=LEASE_NAME, holder="other-host:7", acquired_at=now, expires_at=now + timedelta(hours=1)))
                await session.commit()

    asyncio.run(hold_lease())

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["reconcile"])
    assert excinfo.value.code == 2
