from __future__ import annotations

import asyncio

from reelcast.core.db import lifespan
from reelcast.db.models import RemoteState
from reelcast.services.catalog import CatalogRepository
from tests.conftest import make_record


def seed(settings, *records):
    async def scenario():
        async with lifespan(settings) as state:
            async with state["session_factory"]() as session:
                for record in records:
                    await CatalogRepository(session).add(record)

    asyncio.run(scenario())


def test_v1_health_ok(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["status"] == "ok"
    assert payload["app"] == "reelcast"
    assert payload["environment"] == "test"


def test_list_videos_empty_catalog(client):
    resp = client.get("/v1/videos")
    assert resp.status_code == 200
    assert resp.json() == {"videos": []}


def test_list_and_filter_videos(settings, client):
    ready = make_record("a" * 64, title="Ready Clip", remote_state=RemoteState.ready, playback_ref="pb-1")
    pending = make_record("b" * 64, title="Pending Clip")
    seed(settings, ready, pending)

    resp = client.get("/v1/videos")
    assert resp.status_code == 200
    titles = {video["title"] for video in resp.json()["videos"]}
    assert titles == {"Ready Clip", "Pending Clip"}

    resp = client.get("/v1/videos", params={"state": "ready"})
    [video] = resp.json()["videos"]
    assert video["id"] == ready.id
    assert video["playbackRef"] == "pb-1"
    assert video["mediaAttributes"]["duration"] == 10.0
    assert video["providerRefs"]["mux"]["sessionId"] == "up-1"


def test_invalid_state_filter_is_rejected(client):
    resp = client.get("/v1/videos", params={"state": "published"})
    assert resp.status_code == 422


def test_get_video_by_id(settings, client):
    record = make_record("c" * 64)
    seed(settings, record)

    resp = client.get(f"/v1/videos/{record.id}")
    assert resp.status_code == 200
    assert resp.json()["contentHash"] == "c" * 64

    missing = client.get("/v1/videos/does-not-exist")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "video_not_found"


def test_source_ref_with_non_string_values_is_served(settings, client):
    record = make_record(
        "d" * 64,
        source_ref={"url": "https://youtu.be/abc", "platform": "youtube", "downloaded_at": 1792310400},
    )
    seed(settings, record)

    resp = client.get("/v1/videos")
    assert resp.status_code == 200
    [video] = resp.json()["videos"]
    assert video["sourceRef"]["downloaded_at"] == 1792310400
