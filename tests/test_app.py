import redis

from backend import redis_backend
from conftest import auth_headers


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["redis"] is True
    assert body["online_users"] == 0


def test_rate_limit_caps_requests_per_window(client, monkeypatch):
    monkeypatch.setattr("app.RATE_LIMIT_MAX", 3)

    statuses = [client.get("/api/health").status_code for _ in range(4)]

    assert statuses == [200, 200, 200, 429]
    # the relay endpoint is outside the limiter
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["event"] == "connected"


def test_rate_limiter_fails_open(client, monkeypatch):
    def unavailable(*args, **kwargs):
        raise redis.ConnectionError("redis is down")

    monkeypatch.setattr(redis_backend, "hit_rate_limit", unavailable)
    assert client.get("/api/health").status_code == 200


def test_persistence_errors_become_500(client, alice, monkeypatch):
    def broken(*args, **kwargs):
        raise redis.ConnectionError("connection reset")

    monkeypatch.setattr(redis_backend, "list_users", broken)

    response = client.get("/api/users/", headers=auth_headers(alice))

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


def test_cors_allows_only_client_origin(client):
    allowed = client.options(
        "/api/health",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
    )
    denied = client.options(
        "/api/health",
        headers={"Origin": "http://evil.example", "Access-Control-Request-Method": "GET"},
    )

    assert allowed.headers.get("access-control-allow-origin") == "http://localhost:5173"
    assert "access-control-allow-origin" not in denied.headers
