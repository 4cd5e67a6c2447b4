from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from eventnexus.api.main import create_app
from eventnexus.domain.models import UserPreference
from eventnexus.hub.plugin_registry import PluginRegistry
from eventnexus.infra.db.sources_repository import EventSourcesRepository
from eventnexus.infra.db.users_repository import UsersRepository
from eventnexus.services.recommendations import RecommendationEngine


@pytest.fixture()
def registry(static_plugin, event_factory):
    # the app scores against the wall clock
    start = datetime.now(timezone.utc) + timedelta(days=3)
    registry = PluginRegistry()
    registry.register(
        static_plugin(
            "luma",
            [
                event_factory("luma", "jazz", title="Jazz Night", start=start, category="Music", tags=["music"]),
                event_factory("luma", "talk", title="Product Talk", start=start + timedelta(hours=2), category="Business"),
            ],
        )
    )
    registry.register(static_plugin("site", error="403 Forbidden"))
    return registry


@pytest.fixture()
def api_client(engine, registry):
    EventSourcesRepository(engine).seed_defaults()
    app = create_app(engine=engine, registry=registry)
    with TestClient(app) as client:
        yield client


def _ingest(api_client):
    response = api_client.post("/api/ingest")
    assert response.status_code == 200
    return response.json()


def test_health(api_client):
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_ingest_continues_past_failing_source(api_client):
    payload = _ingest(api_client)
    assert payload["success"] is True
    data = payload["data"]
    by_source = {item["source"]: item for item in data["sources"]}
    assert by_source["luma"]["events_stored"] == 2
    assert by_source["site"]["success"] is False
    assert by_source["site"]["errors"] == ["403 Forbidden"]
    assert data["total_events_fetched"] == 2
    assert data["total_errors"] == 1


def test_ingest_filters_by_sources_param(api_client):
    response = api_client.post("/api/ingest", params={"sources": "luma", "city": "Dubai", "limit": 5})
    data = response.json()["data"]
    assert [item["source"] for item in data["sources"]] == ["luma"]


def test_ingest_status_reports_health_and_stats(api_client):
    _ingest(api_client)
    response = api_client.get("/api/ingest")
    assert response.status_code == 200
    data = response.json()["data"]
    health = {item["source"]: item for item in data["health"]}
    assert health["luma"]["is_healthy"] is True
    assert health["site"]["is_healthy"] is False
    assert health["site"]["last_error"].startswith("AUTH_ERROR")
    stats = {item["source"]: item for item in data["stats"]}
    assert stats["luma"]["success_count"] == 1
    assert stats["site"]["error_count"] == 1
    assert stats["site"]["errors"] == ["403 Forbidden"]


def test_recommendations_for_music_fan(api_client, engine):
    _ingest(api_client)
    UsersRepository(engine).upsert_preferences(UserPreference(user_id="fan", interests=["music"]))
    response = api_client.get(
        "/api/recommendations", params={"user_id": "fan", "algorithm": "content-based", "limit": 2}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2
    assert data["cached"] is False
    first = data["recommendations"][0]
    assert first["event"]["title"] == "Jazz Night"
    assert first["reason"] == "matches your interests"

    again = api_client.get(
        "/api/recommendations", params={"user_id": "fan", "algorithm": "content-based", "limit": 2}
    )
    assert again.json()["data"]["cached"] is True


def test_recommendations_feed(api_client):
    _ingest(api_client)
    response = api_client.get("/api/recommendations", params={"user_id": "newcomer", "feed": True})
    data = response.json()["data"]
    assert len(data["recommended"]) == 2
    assert data["new"] == []
    assert data["total"] == 2


def test_recommendations_validation(api_client):
    assert api_client.get("/api/recommendations").status_code == 422
    response = api_client.get("/api/recommendations", params={"user_id": "fan", "algorithm": "random"})
    assert response.status_code == 422


def test_clear_recommendations(api_client):
    _ingest(api_client)
    api_client.get("/api/recommendations", params={"user_id": "newcomer"})
    response = api_client.delete("/api/recommendations", params={"user_id": "newcomer"})
    assert response.status_code == 200
    assert response.json()["data"]["deleted"] == 2


def test_feedback(api_client, engine):
    _ingest(api_client)
    response = api_client.put(
        "/api/recommendations/feedback", json={"user_id": "fan", "event_id": 1, "feedback": "not_helpful"}
    )
    assert response.status_code == 200
    interactions = UsersRepository(engine).get_interactions("fan")
    assert interactions[0].metadata == {"recommendation_feedback": "not_helpful"}

    bad = api_client.put("/api/recommendations/feedback", json={"user_id": "fan", "event_id": 1, "feedback": "meh"})
    assert bad.status_code == 422


def test_preferences_round_trip(api_client):
    assert api_client.get("/api/user/preferences", params={"user_id": "ana"}).json() == {"success": True, "data": None}

    body = {
        "user_id": "ana",
        "interests": ["music", "tech"],
        "location_lat": 25.2,
        "location_lng": 55.27,
        "preferred_days": ["friday"],
        "preferred_times": ["evening"],
    }
    saved = api_client.put("/api/user/preferences", json=body)
    assert saved.status_code == 200
    assert saved.json()["data"]["location_radius_km"] == 25.0

    fetched = api_client.get("/api/user/preferences", params={"user_id": "ana"}).json()["data"]
    assert fetched["interests"] == ["music", "tech"]
    assert fetched["preferred_days"] == ["friday"]


def test_invalid_preferences_rejected(api_client):
    response = api_client.put("/api/user/preferences", json={"user_id": "ana", "location_lat": 25.2})
    assert response.status_code == 400
    assert response.json()["success"] is False

    unknown_slot = api_client.put("/api/user/preferences", json={"user_id": "ana", "preferred_times": ["midnight"]})
    assert unknown_slot.status_code == 400


def test_bookmark_interaction_toggles(api_client):
    _ingest(api_client)
    body = {"user_id": "ana", "event_id": 1, "interaction_type": "bookmark"}
    first = api_client.post("/api/user/interactions", json=body)
    assert first.json()["data"] == {"event_id": 1, "bookmarked": True}
    assert api_client.get("/api/user/bookmarks", params={"user_id": "ana"}).json()["data"] == {"event_ids": [1]}

    second = api_client.post("/api/user/interactions", json=body)
    assert second.json()["data"]["bookmarked"] is False
    assert api_client.get("/api/user/bookmarks", params={"user_id": "ana"}).json()["data"] == {"event_ids": []}


def test_interactions_are_stored(api_client, engine):
    _ingest(api_client)
    api_client.post("/api/user/interactions", json={"user_id": "ana", "event_id": 2, "interaction_type": "hide"})
    api_client.post(
        "/api/user/interactions",
        json={"user_id": "ana", "event_id": 1, "interaction_type": "click", "metadata": {"from": "feed"}},
    )
    interactions = UsersRepository(engine).get_interactions("ana")
    assert sorted((item.event_id, item.interaction_type) for item in interactions) == [(1, "click"), (2, "hide")]
    assert [item.metadata for item in interactions if item.interaction_type == "click"] == [{"from": "feed"}]

    bad = api_client.post("/api/user/interactions", json={"user_id": "ana", "event_id": 1, "interaction_type": "like"})
    assert bad.status_code == 422


def test_unexpected_errors_become_json(engine, registry, monkeypatch):
    def _explode(self, user_id):
        raise RuntimeError("database went away")

    monkeypatch.setattr(RecommendationEngine, "clear_user_recommendations", _explode)
    app = create_app(engine=engine, registry=registry)
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.delete("/api/recommendations", params={"user_id": "fan"})
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "database went away"}


def test_missing_engine_is_reported(registry, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    app = create_app(registry=registry)
    with TestClient(app) as client:
        response = client.get("/api/recommendations", params={"user_id": "fan"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Database engine not configured"
