"""Tests for the HTTP and WebSocket API."""

import pytest
from fastapi.testclient import TestClient

from soundstats.api.app import app
from soundstats.db import factory
from soundstats.db.store import MemoryEventStore, StoreError
from soundstats.services import listening_stats, playback_tracker, stats_aggregator

TRACK = {
    "url": "https://soundcloud.com/artist/track",
    "title": "Track",
    "artist": "Artist",
    "duration": 200,
    "artwork": "https://img/track.jpg",
}


class BrokenReadStore(MemoryEventStore):
    def query_events_since(self, since, until=None):
        raise StoreError("database is locked")


def _reset_singletons():
    stats_aggregator.reset_stats_aggregator()
    listening_stats.reset_listening_stats_service()
    playback_tracker.reset_playback_tracker()


@pytest.fixture
def make_client():
    clients = []

    def _make(store):
        _reset_singletons()
        factory.set_event_store(store)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
    factory.set_event_store(None)
    _reset_singletons()


@pytest.fixture
def client(make_client):
    return make_client(MemoryEventStore())


def test_snapshot_reflects_ingestion(client):
    assert client.post("/api/play/play", json=TRACK).json() == {"success": True}
    response = client.post("/api/play/time", json={"track": TRACK, "seconds": 95})
    assert response.json() == {"success": True, "logged": True}

    response = client.get("/api/stats/snapshot", params={"period": "weekly"})

    assert response.status_code == 200
    data = response.json()
    assert data["total_plays"] == 1
    assert data["total_listening_seconds"] == 95
    assert data["empty"] is False
    assert data["top_tracks"][0]["title"] == "Track"
    assert data["most_played_track"]["artwork"] == "https://img/track.jpg"


def test_zero_seconds_not_logged(client):
    response = client.post("/api/play/time", json={"track": TRACK, "seconds": 0})
    assert response.json() == {"success": True, "logged": False}


def test_empty_snapshot_is_successful(client):
    response = client.get("/api/stats/snapshot", params={"period": "allTime"})

    assert response.status_code == 200
    data = response.json()
    assert data["empty"] is True
    assert data["most_played_track"] is None
    assert data["comparison"] is None


def test_invalid_period_is_rejected(client):
    response = client.get("/api/stats/snapshot", params={"period": "daily"})
    assert response.status_code == 400


def test_store_failure_is_reported_as_load_error(make_client):
    client = make_client(BrokenReadStore())

    response = client.get("/api/stats/snapshot", params={"period": "weekly"})

    assert response.status_code == 500
    assert "Couldn't load statistics" in response.json()["detail"]


def test_periods_endpoint(client):
    assert client.get("/api/stats/periods").json() == {
        "periods": ["weekly", "monthly", "thisYear", "allTime"]
    }


def test_progress_updates_feed_the_tracker(client):
    response = client.post("/api/play/progress", json={"track": TRACK, "is_playing": True})
    assert response.json()["track"] == TRACK["url"]

    response = client.post("/api/play/automation", json={"paused": True})
    assert response.json()["paused_for_automation"] is True

    response = client.post("/api/play/progress", json={"track": None, "is_playing": False})
    assert response.json()["paused_for_automation"] is True


def test_health_reports_store(client):
    assert client.get("/health").json() == {"status": "healthy", "store": "memory"}


def test_live_stream_announces_changes(client):
    with client.websocket_connect("/api/stats/stream/live") as websocket:
        assert websocket.receive_json()["type"] == "initial"

        client.post("/api/play/play", json=TRACK)

        message = websocket.receive_json()
        assert message["type"] == "stats_updated"
        assert message["coalesced"] == 1
        assert "payload" not in message


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_seconds_are_rejected(client, literal):
    body = (
        '{"track": {"url": "https://soundcloud.com/artist/track", "title": "Track", '
        '"artist": "Artist"}, "seconds": %s}' % literal
    )

    response = client.post(
        "/api/play/time", content=body, headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 422
    snapshot = client.get("/api/stats/snapshot", params={"period": "weekly"})
    assert snapshot.status_code == 200
    assert snapshot.json()["empty"] is True
