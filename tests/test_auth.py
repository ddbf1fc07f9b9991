import jwt
import pytest

from auth import AuthError, create_access_token, verify_token
from conftest import auth_headers
from constants import JWT_ALGORITHM, JWT_SECRET


def test_verify_token_returns_user_id_as_string():
    assert verify_token(create_access_token(12)) == "12"


def test_verify_token_rejects_expired_token():
    with pytest.raises(AuthError) as exc_info:
        verify_token(create_access_token(12, expires_in=-30))
    assert exc_info.value.reason == "Token expired"


@pytest.mark.parametrize("token", [None, "", "abc.def.ghi", 42])
def test_verify_token_rejects_garbage(token):
    with pytest.raises(AuthError) as exc_info:
        verify_token(token)
    assert exc_info.value.reason == "Invalid token"


def test_verify_token_rejects_foreign_signature():
    token = jwt.encode({"userId": "1"}, "someone-elses-secret-that-is-long-enough-too", algorithm=JWT_ALGORITHM)
    with pytest.raises(AuthError):
        verify_token(token)


def test_verify_token_requires_user_claim():
    token = jwt.encode({"sub": "1"}, JWT_SECRET, algorithm=JWT_ALGORITHM)
    with pytest.raises(AuthError):
        verify_token(token)


def test_rest_requires_token(client):
    response = client.get("/api/users/")
    assert response.status_code == 401
    assert response.json()["detail"] == "Access token required"


def test_rest_rejects_invalid_token(client):
    response = client.get("/api/users/", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid token"


def test_rest_rejects_expired_token(client, alice):
    token = create_access_token(alice["id"], expires_in=-30)
    response = client.get("/api/users/", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token expired"


def test_rest_rejects_token_for_missing_user(client):
    response = client.get("/api/users/", headers=auth_headers({"id": 999}))
    assert response.status_code == 401
    assert response.json()["detail"] == "User not found"
