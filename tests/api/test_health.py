from unittest.mock import MagicMock

import redis
from fastapi.testclient import TestClient

from app.api.routes.health import get_health_redis
from app.db.session import get_db
from app.main import app


def _client(db, redis_client):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_health_redis] = lambda: redis_client
    return TestClient(app)


def test_health():
    assert TestClient(app).get("/health").json() == {"status": "ok"}


def test_ready(db):
    try:
        resp = _client(db, MagicMock()).get("/ready")
    finally:
        app.dependency_overrides.clear()
    assert resp.status_code == 200
    assert resp.json()["status"] == "ready"


def test_not_ready_when_redis_down(db):
    broken = MagicMock()
    broken.ping.side_effect = redis.ConnectionError("down")
    try:
        resp = _client(db, broken).get("/ready")
    finally:
        app.dependency_overrides.clear()
    assert resp.status_code == 503
    assert resp.json()["checks"]["database"] == "ok"


def test_metrics_exposed():
    resp = TestClient(app).get("/metrics")
    assert resp.status_code == 200
    assert "purchase_transitions_total" in resp.text
