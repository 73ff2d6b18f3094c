import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.ai_service.config import Settings
from app.ai_service.repositories.summary_cache import MemorySummaryCache, Summary
from app.main import create_app


def _failing():
    raise RuntimeError("connection refused")


@pytest.fixture
def make_client(privacy_service, chat_client, ai_service, summary_cache):
    clients = []

    def factory(database_check=lambda: None, settings=None):
        app = create_app(
            settings,
            privacy_service=privacy_service,
            chat_client=chat_client,
            ai_service=ai_service,
            summary_cache=summary_cache,
            database_check=database_check,
        )
        client = TestClient(app)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()


def test_health_is_200_when_all_checks_pass(make_client):
    response = make_client().get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"] == "ai-svc"
    assert set(body["checks"]) == {"database", "cache", "ai", "system"}
    assert all(check["status"] == "healthy" for check in body["checks"].values())


def test_health_is_503_when_a_dependency_fails(make_client):
    response = make_client(database_check=_failing).get("/health")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "unhealthy"
    assert body["checks"]["database"]["status"] == "unhealthy"
    assert body["checks"]["database"]["message"] == "connection refused"
    assert body["checks"]["cache"]["status"] == "healthy"


def test_slow_check_times_out(make_client):
    settings = Settings(JWT_SECRET="test-jwt-secret", HEALTH_CHECK_TIMEOUT_SECONDS=0.05)

    response = make_client(database_check=lambda: time.sleep(0.5), settings=settings).get("/health")

    assert response.status_code == 503
    assert response.json()["checks"]["database"]["message"] == "timed out after 0.05s"


def test_ready_reflects_database_and_cache(make_client):
    ok = make_client().get("/ready")
    failing = make_client(database_check=_failing).get("/ready")

    assert ok.status_code == 200
    assert ok.json()["status"] == "ready"
    assert failing.status_code == 503
    assert failing.json()["status"] == "not_ready"
    assert set(failing.json()["checks"]) == {"database", "cache"}


def test_live_always_answers(make_client):
    response = make_client(database_check=_failing).get("/live")

    assert response.status_code == 200
    assert response.json()["status"] == "alive"
    assert response.json()["timestamp"]


def test_health_endpoints_need_no_auth(make_client):
    client = make_client()

    for path in ("/health", "/ready", "/live"):
        assert client.get(path).status_code == 200


def test_running_app_sweeps_expired_summaries(privacy_service, chat_client, ai_service):
    now = [datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)]
    cache = MemorySummaryCache(clock=lambda: now[0])
    cache.set_summary(
        "conv-1:user-1:50",
        Summary(
            id="s-1",
            conversation_id="conv-1",
            content="Short recap",
            created_at=now[0],
            expires_at=now[0] + timedelta(hours=1),
        ),
    )
    now[0] += timedelta(days=7)

    app = create_app(
        Settings(JWT_SECRET="test-jwt-secret", CACHE_CLEANUP_SECONDS=0.01),
        privacy_service=privacy_service,
        chat_client=chat_client,
        ai_service=ai_service,
        summary_cache=cache,
        database_check=lambda: None,
    )

    with TestClient(app):
        deadline = time.monotonic() + 2
        while len(cache) and time.monotonic() < deadline:
            time.sleep(0.01)

        assert len(cache) == 0
