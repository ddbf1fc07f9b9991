import fakeredis
import pytest
from fastapi.testclient import TestClient

from app import app
from auth import AuthError, create_access_token
from backend import redis_backend
from presence import PresenceRegistry
from relay import SignalingRelay


class Recorder:
    """Stands in for a WebSocket send callable and keeps every frame."""

    def __init__(self):
        self.frames = []

    async def __call__(self, frame: dict):
        self.frames.append(frame)

    def events(self, name=None):
        return [f for f in self.frames if name is None or f["event"] == name]


def fake_verifier(token):
    if isinstance(token, str) and token.startswith("token-"):
        return token[len("token-"):]
    raise AuthError("Invalid token")


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    monkeypatch.setattr(redis_backend, "redis_client", client)
    return client


@pytest.fixture
def backend():
    return redis_backend


@pytest.fixture
def registry():
    return PresenceRegistry()


@pytest.fixture
def relay(registry):
    return SignalingRelay(registry, verifier=fake_verifier)


@pytest.fixture
def client(monkeypatch):
    # fresh presence state for every test
    monkeypatch.setattr(app.state, "relay", SignalingRelay(PresenceRegistry()))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def alice(backend):
    return backend.create_user("alice", "alice@example.com", "Alice", "Liddell", status="online")


@pytest.fixture
def bob(backend):
    return backend.create_user("bob", "bob@example.com", "Bob", "Builder")


@pytest.fixture
def carol(backend):
    return backend.create_user("carol", "carol@example.com", "Carol", "Danvers", status="away")


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user['id'])}"}
