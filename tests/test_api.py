"""Tests for the HTTP API."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from skygig.api.main import create_app
from skygig.core.clock import ManualClock
from skygig.marketplace import Marketplace

from conftest import DESCRIPTION, inline_settings

POSTER = {"X-User-Id": "poster_1"}
PILOT = {"X-User-Id": "pilot_1"}


class TestMarketplaceAPI:
    """Request handling through FastAPI."""

    @pytest.fixture
    def clock(self):
        return ManualClock()

    @pytest.fixture
    def client(self, clock):
        with Marketplace(inline_settings(), clock=clock) as marketplace:
            yield TestClient(create_app(marketplace))

    def _job_body(self, clock, **overrides):
        body = {
            "title": "Solar farm survey",
            "description": DESCRIPTION,
            "expired_at": (clock.now() + timedelta(days=10)).isoformat(),
            "publish": True,
        }
        body.update(overrides)
        return body

    def test_missing_caller_is_unauthorized(self, client):
        response = client.get("/api/v1/jobs")

        assert response.status_code == 401
        assert response.json()["error"] == "http_error"

    def test_hiring_flow(self, client, clock):
        created = client.post("/api/v1/jobs", json=self._job_body(clock), headers=POSTER)
        assert created.status_code == 201
        job_id = created.json()["id"]
        assert created.json()["status"] == "open"

        applied = client.post(f"/api/v1/jobs/{job_id}/applicants", headers=PILOT)
        assert applied.status_code == 201
        applicant_id = applied.json()["id"]

        duplicate = client.post(f"/api/v1/jobs/{job_id}/applicants", headers=PILOT)
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "conflict"

        stage = client.get(f"/api/v1/matches/{job_id}", headers=PILOT)
        assert stage.json()["stage"] == "matching"

        decided = client.post(
            f"/api/v1/applicants/{applicant_id}/decision", json={"decision": "approve"}, headers=POSTER
        )
        assert decided.status_code == 200
        assert decided.json()["status"] == "approved"

        again = client.post(
            f"/api/v1/applicants/{applicant_id}/decision", json={"decision": "reject"}, headers=POSTER
        )
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_transition"

        stage = client.get(f"/api/v1/matches/{job_id}", headers=PILOT).json()
        assert stage["stage"] == "in_progress"
        assert stage["in_progress"]["progress_pct"] == 0

        offers = client.get("/api/v1/notifications", params={"tab": "offer"}, headers=PILOT).json()
        assert len(offers) == 1

        progress = client.put(
            f"/api/v1/matches/{job_id}/pilot_1/progress", json={"progress_pct": 150}, headers=PILOT
        )
        assert progress.json()["progress_pct"] == 100

        completed = client.post(f"/api/v1/matches/{job_id}/pilot_1/complete", headers=POSTER)
        assert completed.json()["stage"] == "completed"

    def test_validation_errors_are_422(self, client, clock):
        response = client.post("/api/v1/jobs", json=self._job_body(clock, title="abc"), headers=POSTER)

        assert response.status_code == 422
        payload = response.json()
        assert payload["error"] == "validation_error"
        assert "title" in payload["details"]["errors"]

    def test_malformed_body_is_422(self, client):
        response = client.post("/api/v1/applicants/app_1/decision", json={"decision": "maybe"}, headers=POSTER)

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_forbidden_and_not_found(self, client, clock):
        job_id = client.post("/api/v1/jobs", json=self._job_body(clock), headers=POSTER).json()["id"]

        forbidden = client.post(f"/api/v1/jobs/{job_id}/close", headers=PILOT)
        missing = client.get("/api/v1/jobs/job_missing", headers=POSTER)

        assert forbidden.status_code == 403
        assert forbidden.json()["error"] == "forbidden"
        assert missing.status_code == 404

    def test_draft_publish_and_delete(self, client, clock):
        job_id = client.post(
            "/api/v1/jobs", json=self._job_body(clock, publish=False), headers=POSTER
        ).json()["id"]

        archive = client.get("/api/v1/jobs", params={"view": "archive"}, headers=POSTER).json()
        assert [j["id"] for j in archive] == [job_id]

        updated = client.patch(f"/api/v1/jobs/{job_id}", json={"tags": ["thermal"]}, headers=POSTER)
        assert updated.json()["tags"] == ["thermal"]

        published = client.post(f"/api/v1/jobs/{job_id}/publish", headers=POSTER)
        assert published.json()["status"] == "open"
        assert [j["id"] for j in client.get("/api/v1/jobs/browse", headers=PILOT).json()] == [job_id]

        assert client.delete(f"/api/v1/jobs/{job_id}", headers=POSTER).status_code == 204
        assert client.get(f"/api/v1/jobs/{job_id}", headers=POSTER).status_code == 404

    def test_conversation_flow(self, client):
        opened = client.post(
            "/api/v1/conversations", json={"job_id": "job_1", "participant_id": "poster_1"}, headers=PILOT
        )
        conversation_id = opened.json()["id"]

        sent = client.post(
            f"/api/v1/conversations/{conversation_id}/messages", json={"text": "Ready to fly"}, headers=PILOT
        )
        assert sent.status_code == 201
        assert sent.json()["status"] == "delivered"

        assert client.get("/api/v1/conversations/unread", headers=POSTER).json() == {"count": 1}

        read = client.post(f"/api/v1/conversations/{conversation_id}/read", headers=POSTER)
        assert read.json()["unread_count"]["poster_1"] == 0

        outsider = client.get(f"/api/v1/conversations/{conversation_id}/messages", headers={"X-User-Id": "stranger"})
        assert outsider.status_code == 403

        cleared = client.post("/api/v1/notifications/read-all", headers=POSTER)
        assert cleared.json() == {"count": 1}

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "healthy"
        assert payload["components"]["marketplace"] == "healthy"
