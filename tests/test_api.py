"""
test_api.py — HTTP surface tests via FastAPI's TestClient.

Covers:
    • Report submission, validation errors and the error envelope
    • Thread, response, reply, conversation endpoints
    • Notification listing, read state, dismiss/acknowledge, map markers
    • Geo helper endpoints
    • Health probes and request-id headers

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from backend.app.main import app

SRINAGAR = {"latitude": 34.08, "longitude": 74.80}
SRINAGAR_NEAR = {"latitude": 34.081, "longitude": 74.801}


@pytest.fixture()
def client():
    # Fresh in-memory service per test via the lifespan
    with TestClient(app) as c:
        yield c


def _submit_attack(client, author="citizen-1", origin=SRINAGAR, label="Srinagar"):
    resp = client.post("/api/v1/reports", json={
        "author_id": author,
        "text": "Gunfire near the bridge",
        "category": "attack",
        "origin": origin,
        "location_label": label,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def _wait_for_notifications(client, recipient_id, expected, **params):
    """Fan-out runs on the event bus worker; poll briefly until it lands."""
    body = {}
    for _ in range(100):
        body = client.get(
            "/api/v1/notifications",
            params={"recipient_id": recipient_id, **params},
        ).json()
        if len(body["notifications"]) >= expected:
            return body
        time.sleep(0.01)
    return body


class TestReports:

    def test_submit_attack_report(self, client):
        report = _submit_attack(client)
        assert report["category"] == "attack"
        assert report["origin"] == SRINAGAR
        assert report["id"]

    def test_attack_without_location_is_422(self, client):
        resp = client.post("/api/v1/reports", json={
            "author_id": "citizen-1", "text": "Help", "category": "attack",
        })
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "Location Required" in error["message"]

    def test_invalid_origin_is_422(self, client):
        resp = client.post("/api/v1/reports", json={
            "author_id": "citizen-1", "text": "Help", "category": "attack",
            "origin": {"latitude": 120.0, "longitude": 10.0},
        })
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "INVALID_COORDINATE"

    def test_list_attack_reports_with_nearby_counts(self, client):
        first = _submit_attack(client, "citizen-1")
        _submit_attack(client, "citizen-2", origin=SRINAGAR_NEAR)
        rows = client.get("/api/v1/reports/attacks").json()
        assert len(rows) == 2
        assert all(r["nearby_count"] == 1 for r in rows)
        assert rows[-1]["id"] == first["id"]

    def test_list_reports_by_author(self, client):
        _submit_attack(client, "citizen-1")
        _submit_attack(client, "citizen-2", origin=SRINAGAR_NEAR)
        rows = client.get("/api/v1/reports", params={"author_id": "citizen-2"}).json()
        assert [r["author_id"] for r in rows] == ["citizen-2"]


class TestThreads:

    def test_thread_lifecycle(self, client):
        report = _submit_attack(client)
        tid = report["id"]

        resp = client.post(f"/api/v1/threads/{tid}/responses",
                           json={"author_id": "gov-1", "text": "Team dispatched"})
        assert resp.status_code == 201
        assert resp.json()["location_label"] == "Srinagar"

        resp = client.post(f"/api/v1/threads/{tid}/replies",
                           json={"author_id": "citizen-1", "text": "Thank you"})
        assert resp.status_code == 201

        thread = client.get(f"/api/v1/threads/{tid}").json()
        assert thread["is_answered"] is True

        convo = client.get(f"/api/v1/threads/{tid}/conversation").json()
        assert convo["awaiting_response"] is False
        assert [e["role"] for e in convo["entries"]] == ["reporter", "government", "citizen-reply"]

        listing = client.get("/api/v1/conversations/citizen-1").json()
        assert [c["thread_id"] for c in listing] == [tid]

    def test_response_to_missing_thread_is_404(self, client):
        resp = client.post("/api/v1/threads/ghost/responses",
                           json={"author_id": "gov-1", "text": "hello"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "THREAD_NOT_FOUND"

    def test_delete_is_idempotent(self, client):
        tid = _submit_attack(client)["id"]
        assert client.delete(f"/api/v1/threads/{tid}").json()["deleted"] is True
        assert client.delete(f"/api/v1/threads/{tid}").json()["deleted"] is False
        assert client.get(f"/api/v1/threads/{tid}").status_code == 404


class TestNotifications:

    def test_nearby_recipient_receives_threat(self, client):
        report = _submit_attack(client)
        body = _wait_for_notifications(client, "citizen-2", 1, lat=34.081, lon=74.801)
        assert body["unread_count"] == 1
        n = body["notifications"][0]
        assert n["id"] == f"alert_{report['id']}"
        assert n["kind"] == "threat"
        assert n["read"] is False

    def test_half_a_location_is_422(self, client):
        resp = client.get("/api/v1/notifications",
                          params={"recipient_id": "citizen-2", "lat": 34.0})
        assert resp.status_code == 422

    def test_read_flow(self, client):
        report = _submit_attack(client)
        _wait_for_notifications(client, "citizen-2", 1)
        nid = f"alert_{report['id']}"

        resp = client.post(f"/api/v1/notifications/{nid}/read", json={"recipient_id": "citizen-2"})
        assert resp.json()["newly_read"] is True
        count = client.get("/api/v1/notifications/unread-count",
                           params={"recipient_id": "citizen-2"}).json()
        assert count["unread_count"] == 0

        client.delete("/api/v1/notifications/read-state/citizen-2")
        count = client.get("/api/v1/notifications/unread-count",
                           params={"recipient_id": "citizen-2"}).json()
        assert count["unread_count"] == 1

        resp = client.post("/api/v1/notifications/read-all", json={"recipient_id": "citizen-2"})
        assert resp.json()["marked"] == 1

    def test_direct_notice_and_acknowledge(self, client):
        resp = client.post("/api/v1/notifications", json={
            "recipient_id": "citizen-5", "title": "Evacuate", "message": "Now", "kind": "evacuation",
        })
        assert resp.status_code == 201
        nid = resp.json()["id"]

        assert client.get(f"/api/v1/notifications/{nid}").json()["kind"] == "evacuation"
        assert client.delete(f"/api/v1/notifications/{nid}").status_code == 200
        assert client.get(f"/api/v1/notifications/{nid}").status_code == 404
        assert client.delete(f"/api/v1/notifications/{nid}").status_code == 404

    def test_dismiss(self, client):
        report = _submit_attack(client)
        _wait_for_notifications(client, "citizen-2", 1)
        nid = f"alert_{report['id']}"
        resp = client.post(f"/api/v1/notifications/{nid}/dismiss", json={"recipient_id": "citizen-2"})
        assert resp.json()["dismissed"] is True
        body = client.get("/api/v1/notifications", params={"recipient_id": "citizen-3"}).json()
        assert body["notifications"] == []

    def test_map_points(self, client):
        report = _submit_attack(client)
        _wait_for_notifications(client, "citizen-2", 1)
        points = client.get("/api/v1/notifications/map-points").json()
        assert points == [{
            "id": f"alert_{report['id']}", "lat": 34.08, "lon": 74.8, "kind": "threat",
        }]


class TestGeoEndpoints:

    def test_distance(self, client):
        resp = client.post("/api/v1/geo/distance",
                           json={"origin": SRINAGAR, "destination": SRINAGAR_NEAR})
        body = resp.json()
        assert 0.1 < body["distance_km"] < 0.2
        assert body["distance_display"].endswith(" m")

    def test_nearest(self, client):
        resp = client.post("/api/v1/geo/nearest", json={
            "location": SRINAGAR,
            "candidates": [
                {"id": "zone-far", "lat": 28.61, "lon": 77.21, "kind": "zone"},
                {"id": "zone-near", "lat": 34.09, "lon": 74.81, "kind": "zone"},
            ],
        })
        assert resp.json()["point"]["id"] == "zone-near"

    def test_nearby_excludes_self(self, client):
        resp = client.post("/api/v1/geo/nearby", json={
            "location": SRINAGAR,
            "radius_km": 10.0,
            "candidates": [
                {"id": "self", "lat": 34.08, "lon": 74.80},
                {"id": "other", "lat": 34.081, "lon": 74.801},
            ],
        })
        body = resp.json()
        assert body["count"] == 1
        assert body["points"][0]["id"] == "other"


class TestHealth:

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness_healthy(self, client):
        body = client.get("/health/ready").json()
        assert body["status"] == "healthy"
        names = {c["name"] for c in body["components"]}
        assert names == {"storage", "event_bus", "dispatcher"}

    def test_request_id_header(self, client):
        resp = client.get("/", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert "X-Process-Time" in resp.headers

    def test_request_id_minted_when_absent(self, client):
        resp = client.get("/api/v1/threads/ghost")
        assert resp.status_code == 404
        assert len(resp.headers["X-Request-ID"]) == 16
