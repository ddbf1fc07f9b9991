from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend import redis_backend
from constants import JWT_ALGORITHM, JWT_EXPIRES_SECONDS, JWT_SECRET
from logging_config import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class AuthError(Exception):
    """Raised when a bearer credential cannot be turned into a user id."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def create_access_token(user_id, expires_in: Optional[int] = None) -> str:
    expires_in = JWT_EXPIRES_SECONDS if expires_in is None else expires_in
    payload = {
        "userId": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token) -> str:
    """Return the user id carried by token, or raise AuthError."""
    if not token or not isinstance(token, str):
        raise AuthError("Invalid token")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected token: {e}")
        raise AuthError("Invalid token")

    user_id = payload.get("userId")
    if user_id is None:
        raise AuthError("Invalid token")
    return str(user_id)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> dict:
    """FastAPI dependency: resolve the bearer token to a stored user row."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Access token required")

    try:
        user_id = verify_token(credentials.credentials)
    except AuthError as e:
        status_code = 401 if e.reason == "Token expired" else 403
        logger.warning(f"REST authentication failed: {e.reason}")
        raise HTTPException(status_code=status_code, detail=e.reason)

    user = redis_backend.get_user(user_id)
    if not user:
        logger.warning(f"REST authentication failed: user {user_id} not found")
        raise HTTPException(status_code=401, detail="User not found")
    return user
