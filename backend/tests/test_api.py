"""
HTTP surface tests: routes_items.py over the in-process pipeline fixture.
"""
import pytest
from fastapi.testclient import TestClient

from nuggets.api.routes_items import pipeline_dep
from nuggets.main import app
from nuggets.services.entitlements import StaticEntitlementSource

from tests.fixtures.pipeline_fixtures import RSS_FEED

HEADERS = {"X-Owner-Id": "owner-pro"}


@pytest.fixture
def client(pipeline):
    app.dependency_overrides[pipeline_dep] = lambda: pipeline
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _capture(client, title, url="https://e.com/a"):
    resp = client.post("/api/items", json={"source_url": url, "title": title, "scrape": False}, headers=HEADERS)
    assert resp.status_code == 201
    return resp.json()


def test_owner_header_required(client):
    assert client.get("/api/items").status_code == 401


def test_capture_and_list(client):
    body = _capture(client, "New software release for mobile app")
    assert body["processing_state"] == "scraped"
    assert body["category"] == "technology"

    listed = client.get("/api/items", headers=HEADERS).json()
    assert [i["item_id"] for i in listed] == [body["item_id"]]


def test_processing_and_status_roundtrip(client, dispatcher, pipeline):
    _capture(client, "New software release for mobile app", "https://e.com/1")
    _capture(client, "Cloud data platform update", "https://e.com/2")

    resp = client.post("/api/processing", json={}, headers=HEADERS)
    assert resp.status_code == 202
    body = resp.json()
    assert body["group_count"] == 1
    group_id = body["group_ids"][0]

    pending = client.get(f"/api/status/{group_id}", headers=HEADERS).json()
    assert pending["ready"] is False
    assert pending["result"]["summary"] == "Processing 0/2 articles..."

    dispatcher.drain(pipeline)
    done = client.get(f"/api/status/{group_id}", headers=HEADERS).json()
    assert done["ready"] is True
    assert done["result"]["is_grouped"] is True
    assert len(done["result"]["individual_summaries"]) == 2


def test_status_unknown_is_404(client):
    assert client.get("/api/status/nope", headers=HEADERS).status_code == 404


def test_processing_denied_is_403(client, pipeline):
    pipeline.entitlements = StaticEntitlementSource(owner_tiers={}, default_tier="free", free_ai_enabled=False)
    _capture(client, "Anything")
    assert client.post("/api/processing", json={}, headers=HEADERS).status_code == 403


def test_review_and_patch(client):
    item = _capture(client, "Cyber security on the web")
    review = client.post(f"/api/items/{item['item_id']}/review", headers=HEADERS).json()
    assert review["times_reviewed"] == 1
    assert review["priority_score"] < item["priority_score"]

    patched = client.patch(f"/api/items/{item['item_id']}", json={"status": "archived"}, headers=HEADERS)
    assert patched.status_code == 200
    assert patched.json()["status"] == "archived"
    assert client.patch("/api/items/nope", json={"status": "archived"}, headers=HEADERS).status_code == 404


def test_reset_fresh_item_conflicts(client):
    item = _capture(client, "Physics experiment discovery")
    client.post("/api/processing", json={"item_ids": [item["item_id"]]}, headers=HEADERS)
    assert client.post(f"/api/items/{item['item_id']}/reset", headers=HEADERS).status_code == 409


def test_streak(client):
    _capture(client, "Physics experiment discovery")
    assert client.get("/api/streak", headers=HEADERS).json()["streak_length"] == 1


def test_feed_ingest(client, feed_routes):
    feed_routes["https://feed.example.com/rss"] = (200, RSS_FEED)
    payload = {"feed_id": "feed-1", "feed_url": "https://feed.example.com/rss"}

    first = client.post("/api/feeds/ingest", json=payload, headers=HEADERS).json()
    second = client.post("/api/feeds/ingest", json=payload, headers=HEADERS).json()
    assert len(first["created_item_ids"]) == 2
    assert second["skipped_duplicates"] == 2


def test_feed_ingest_unreachable_is_502(client):
    payload = {"feed_id": "feed-1", "feed_url": "https://feed.example.com/missing"}
    assert client.post("/api/feeds/ingest", json=payload, headers=HEADERS).status_code == 502


def test_feed_ingest_queued(client, dispatcher):
    payload = {"feed_id": "feed-1", "feed_url": "https://feed.example.com/rss"}
    resp = client.post("/api/feeds/ingest/queue", json=payload, headers=HEADERS)
    assert resp.status_code == 202
    assert resp.json() == {"feed_id": "feed-1", "queued": True}
    assert dispatcher.units("ingest_feed") == [
        {"owner_id": "owner-pro", "feed_id": "feed-1", "feed_url": "https://feed.example.com/rss", "category": None}
    ]
