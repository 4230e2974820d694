import uuid

import pytest
from fastapi.testclient import TestClient

from coachbot.config import settings
from coachbot.database import get_db
from coachbot.dependencies import get_rate_limiter, get_redis_client
from coachbot.main import app
from coachbot.services.dead_letter_service import DeadLetterEntry, push_dead_letter
from coachbot.services.feedback_service import append_feedback
from coachbot.services.flow_analytics_service import record_flow_event
from coachbot.services.queue_service import claim_jobs, enqueue_job, nack_job
from coachbot.services.rate_limiter import RateLimiter
from coachbot.services.state_machine import FunnelEvent

ADMIN_KEY = "admin-secret"
HEADERS = {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def client(session_factory, fake_redis, monkeypatch):
    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    monkeypatch.setattr(settings, "admin_api_key", ADMIN_KEY)
    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(fake_redis)
    app.dependency_overrides[get_redis_client] = lambda: fake_redis
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _dead_letter(db, job_id=None):
    job_id = job_id or uuid.uuid4()
    push_dead_letter(
        db,
        DeadLetterEntry(
            job_id=job_id,
            original_queue=settings.queue_name,
            attempts_made=3,
            error_message="TelegramAPIError: chat not found",
            payload={"update_id": 1, "chat_id": 100, "user_id": 7, "text": "hi"},
        ),
    )
    db.commit()
    return job_id


class TestAdminAuth:
    def test_missing_key(self, client):
        response = client.get("/queue/health")
        assert response.status_code == 401
        assert response.json() == {"ok": False}

    def test_wrong_key(self, client):
        assert client.get("/queue/health", headers={"X-Admin-Key": "guess"}).status_code == 401

    def test_unconfigured_key_rejects_everyone(self, client, monkeypatch):
        monkeypatch.setattr(settings, "admin_api_key", None)
        assert client.get("/queue/health", headers=HEADERS).status_code == 401

    def test_rate_limit_checked_before_auth(self, client, monkeypatch):
        monkeypatch.setattr(settings, "admin_rate_limit_max_requests", 2)

        client.get("/queue/health")
        client.get("/queue/health")
        response = client.get("/queue/health", headers=HEADERS)

        assert response.status_code == 429
        assert response.json()["error"] == "rate_limited"
        assert response.json()["retryAfterSec"] == 60


class TestQueueEndpoints:
    def test_queue_health(self, client, db_session):
        enqueue_job(db_session, settings.queue_name, {"chat_id": 100})
        db_session.commit()
        _dead_letter(db_session)

        body = client.get("/queue/health", headers=HEADERS).json()

        assert body["ok"] is True
        assert body["queues"]["main"]["waiting"] == 1
        assert body["queues"]["dlq"]["waiting"] == 1

    def test_failed_jobs(self, client, db_session):
        job_id = enqueue_job(db_session, settings.queue_name, {"chat_id": 100}, max_attempts=1)
        db_session.commit()
        claim_jobs(db_session, settings.queue_name, limit=1)
        nack_job(db_session, job_id, "boom")

        body = client.get("/queue/failed?limit=5", headers=HEADERS).json()

        assert [job["id"] for job in body["jobs"]] == [str(job_id)]
        assert body["jobs"][0]["failedReason"] == "boom"
        assert body["jobs"][0]["attemptsMade"] == 1

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_bounds(self, client, limit):
        assert client.get(f"/queue/failed?limit={limit}", headers=HEADERS).status_code == 422

    def test_dlq_listing(self, client, db_session):
        job_id = _dead_letter(db_session)

        body = client.get("/queue/dlq", headers=HEADERS).json()

        assert body["jobs"][0]["id"] == str(job_id)
        assert body["jobs"][0]["data"]["originalQueue"] == settings.queue_name

    def test_requeue(self, client, db_session):
        job_id = _dead_letter(db_session)

        first = client.post(f"/queue/dlq/requeue/{job_id}", headers=HEADERS)
        second = client.post(f"/queue/dlq/requeue/{job_id}", headers=HEADERS)

        assert first.status_code == 200
        assert first.json()["ok"] is True
        assert first.json()["jobId"] == str(job_id)
        assert uuid.UUID(first.json()["newJobId"])
        assert second.status_code == 404
        assert second.json() == {"ok": False}

    def test_requeue_unknown_and_malformed_ids(self, client):
        assert client.post(f"/queue/dlq/requeue/{uuid.uuid4()}", headers=HEADERS).status_code == 404
        assert client.post("/queue/dlq/requeue/not-a-uuid", headers=HEADERS).status_code == 404


class TestStatsEndpoints:
    def test_digest_status(self, client):
        body = client.get("/digest/status", headers=HEADERS).json()
        assert body == {"ok": True, "totalSent": 0, "sentLast24h": 0, "lastSent": None}

    def test_flow_summary(self, client, db_session):
        record_flow_event(db_session, FunnelEvent.FEEDBACK_STARTED, chat_id=100, user_id=7, update_id=1)
        db_session.commit()

        body = client.get("/flows/summary", headers=HEADERS).json()

        assert body["flows"]["feedback"] == {"started": 1, "saved": 0, "cancelled": 0}
        assert body["flows"]["mode_recommendation"] == {"started": 0, "completed": 0, "cancelled": 0}

    def test_feedback_listing_for_chat(self, client, db_session):
        for update_id, text in ((1, "Полезно"), (2, "Хочу больше примеров")):
            append_feedback(db_session, chat_id=100, user_id=7, username="alice", update_id=update_id, message=text)
        append_feedback(db_session, chat_id=200, user_id=8, update_id=3, message="другой чат")
        db_session.commit()

        body = client.get("/feedback", params={"chat_id": 100, "limit": 5}, headers=HEADERS).json()

        assert body["ok"] is True
        assert [entry["message"] for entry in body["feedback"]] == ["Хочу больше примеров", "Полезно"]
        assert body["feedback"][0]["chatId"] == 100
        assert body["feedback"][0]["updateId"] == 2
        assert body["feedback"][0]["username"] == "alice"

    def test_feedback_listing_requires_chat_id(self, client):
        assert client.get("/feedback", headers=HEADERS).status_code == 422


class TestHealth:
    def test_healthy(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "timestamp" in response.json()

    def test_degraded_without_redis(self, client):
        app.dependency_overrides[get_redis_client] = lambda: None

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
        assert response.json()["checks"]["redis"] == "error"
