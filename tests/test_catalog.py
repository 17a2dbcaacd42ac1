from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from reelcast.core.db import lifespan
from reelcast.core.errors import ReconcilerBusyError
from reelcast.db.models import CatalogLock, RemoteState
from reelcast.services.catalog import (
    CatalogLease,
    CatalogRepository,
    DedupLedger,
    export_catalog,
    record_to_document,
)
from tests.conftest import make_record


def test_ledger_claim_release_commit():
    ledger = DedupLedger(["known"])
    assert ledger.exists("known")
    assert not ledger.claim("known")

    assert ledger.claim("fresh")
    assert not ledger.claim("fresh")
    ledger.release("fresh")
    assert ledger.claim("fresh")
    ledger.commit("fresh")
    assert ledger.exists("fresh")
    assert len(ledger) == 2


def test_state_machine_is_monotonic():
    record = make_record()
    assert not record.advance_state(RemoteState.ready)
    assert record.remote_state is RemoteState.uploading
    assert record.playback_ref is None

    assert record.advance_state(RemoteState.preparing)
    assert not record.advance_state(RemoteState.uploading)
    assert record.remote_state is RemoteState.preparing

    assert record.advance_state(RemoteState.ready, playback_ref="pb-1")
    assert record.playback_ref == "pb-1"
    assert not record.advance_state(RemoteState.errored)
    assert record.remote_state is RemoteState.ready


def test_errored_is_absorbing():
    record = make_record()
    assert record.advance_state(RemoteState.errored)
    assert not record.advance_state(RemoteState.ready, playback_ref="pb-late")
    assert record.remote_state is RemoteState.errored
    assert record.playback_ref is None


def test_set_provider_asset_id_keeps_other_refs():
    record = make_record(provider_refs={"mux": {"session_id": "up-1", "asset_id": None}, "cloudflare": {"session_id": "cf", "asset_id": "cf"}})
    before = record.provider_refs
    record.set_provider_asset_id("mux", "as-1")
    assert record.provider_refs is not before
    assert record.provider_ref("mux") == {"session_id": "up-1", "asset_id": "as-1"}
    assert record.provider_ref("cloudflare")["asset_id"] == "cf"


def test_repository_rejects_duplicate_hash(settings):
    async def scenario():
        async with lifespan(settings) as state:
            async with state["session_factory"]() as session:
                repo = CatalogRepository(session)
                await repo.add(make_record("b" * 64))
                with pytest.raises(IntegrityError):
                    await repo.add(make_record("b" * 64))
            async with state["session_factory"]() as session:
                repo = CatalogRepository(session)
                assert await repo.content_hashes() == {"b" * 64}
                assert (await repo.by_hash("b" * 64)).title == "Beach Day"

    asyncio.run(scenario())


def test_repository_pending_and_state_filter(settings):
    async def scenario():
        async with lifespan(settings) as state:
            async with state["session_factory"]() as session:
                repo = CatalogRepository(session)
                await repo.add(make_record("1" * 64, remote_state=RemoteState.uploading))
                await repo.add(make_record("2" * 64, remote_state=RemoteState.preparing))
                await repo.add(make_record("3" * 64, remote_state=RemoteState.ready, playback_ref="pb"))
                await repo.add(make_record("4" * 64, remote_state=RemoteState.errored))
                pending = await repo.pending()
                ready = await repo.list(state=RemoteState.ready)
                everything = await repo.list()
            return pending, ready, everything

    pending, ready, everything = asyncio.run(scenario())
    assert {r.content_hash[0] for r in pending} == {"1", "2"}
    assert [r.playback_ref for r in ready] == ["pb"]
    assert len(everything) == 4


def test_lease_excludes_second_holder_until_expiry(settings):
    async def scenario():
        async with lifespan(settings) as state:
            factory = state["session_factory"]
            async with factory() as first_session:
                first = CatalogLease(first_session, "reconciler", "host-a:1", ttl_s=60)
                await first.acquire()
                async with factory() as second_session:
                    with pytest.raises(ReconcilerBusyError):
                        await CatalogLease(second_session, "reconciler", "host-b:2", ttl_s=60).acquire()
                await first.release()
            async with factory() as third_session:
                async with CatalogLease(third_session, "reconciler", "host-b:2", ttl_s=60):
                    lock = await third_session.get(CatalogLock, "reconciler")
                    assert lock.holder == "host-b:2"

    asyncio.run(scenario())


def test_expired_lease_is_taken_over(settings):
    async def scenario():
        async with lifespan(settings) as state:
            factory = state["session_factory"]
            past = datetime.now(timezone.utc) - timedelta(hours=2)
            async with factory() as session:
                session.add(CatalogLock(name="reconciler", holder="crashed:9", acquired_at=past, expires_at=past + timedelta(hours=1)))
                await session.commit()
            async with factory() as session:
                async with CatalogLease(session, "reconciler", "host-a:1", ttl_s=60):
                    lock = await session.get(CatalogLock, "reconciler")
                    assert lock.holder == "host-a:1"
            async with factory() as session:
                assert await session.get(CatalogLock, "reconciler") is None

    asyncio.run(scenario())


def test_renew_extends_a_held_lease(settings):
    async def scenario():
        async with lifespan(settings) as state:
            factory = state["session_factory"]
            async with factory() as session:
                lease = CatalogLease(session, "reconciler", "host-a:1", ttl_s=60)
                await lease.acquire()
                async with factory() as other:
                    first_expiry = (await other.get(CatalogLock, "reconciler")).expires_at
                await asyncio.sleep(0.01)
                await lease.renew()
                async with factory() as other:
                    lock = await other.get(CatalogLock, "reconciler")
                    assert lock.holder == "host-a:1"
                    assert lock.expires_at > first_expiry
                await lease.release()

    asyncio.run(scenario())


def test_lost_lease_cannot_be_renewed_or_released(settings):
    async def scenario():
        async with lifespan(settings) as state:
            factory = state["session_factory"]
            async with factory() as session:
                lease = CatalogLease(session, "reconciler", "host-a:1", ttl_s=1)
                await lease.acquire()
                # host-b takes over after host-a's lease lapsed.
                async with factory() as other:
                    lock = await other.get(CatalogLock, "reconciler")
                    lock.holder = "host-b:2"
                    lock.expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
                    await other.commit()
                with pytest.raises(ReconcilerBusyError, match="host-a:1"):
                    await lease.renew()
                await lease.release()
            async with factory() as session:
                lock = await session.get(CatalogLock, "reconciler")
                assert lock is not None
                assert lock.holder == "host-b:2"

    asyncio.run(scenario())


def test_record_document_shape():
    record = make_record("c" * 64, source_ref={"url": "https://youtu.be/x", "platform": "youtube"})
    document = record_to_document(record)
    assert document["contentHash"] == "c" * 64
    assert document["providerRefs"] == {"mux": {"sessionId": "up-1", "assetId": None}}
    assert document["playbackRef"] is None
    assert document["mediaAttributes"] == {"duration": 10.0, "width": 1920, "height": 1080, "size": 4096}
    assert document["remoteState"] == "uploading"
    assert document["createdAt"] == "2026-10-18T12:00:00Z"
    assert document["sourceRef"]["platform"] == "youtube"


def test_export_catalog_writes_atomically(tmp_path):
    target = tmp_path / "public" / "videos.json"
    export_catalog([make_record("d" * 64), make_record("e" * 64, title="Night Drive")], target)
    payload = json.loads(target.read_text())
    assert [video["title"] for video in payload["videos"]] == ["Beach Day", "Night Drive"]
    assert sorted(p.name for p in target.parent.iterdir()) == ["videos.json"]
