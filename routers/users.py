from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import get_current_user
from backend import public_user, redis_backend
from constants import USER_STATUSES
from logging_config import get_logger
from schemas.users import (
    OnlineUsersResponse,
    Pagination,
    UpdateStatusRequest,
    UserResponse,
    UsersResponse,
    UserStatsResponse,
    UserStatusResponse,
)

logger = get_logger(__name__)

users_router = APIRouter(prefix="/api/users", tags=["users"])


@users_router.get("/", response_model=UsersResponse)
async def list_users(
    search: Optional[str] = Query(None, description="Match against username, first or last name"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
):
    users = redis_backend.list_users(current_user["id"], search=search, limit=limit, offset=offset)
    logger.debug(f"User {current_user['id']} listed {len(users)} users (search={search!r})")
    return UsersResponse(users=users, pagination=Pagination(limit=limit, offset=offset, count=len(users)))


@users_router.get("/online/list", response_model=OnlineUsersResponse)
async def online_users(current_user: dict = Depends(get_current_user)):
    return OnlineUsersResponse(online_users=redis_backend.online_users(current_user["id"]))


@users_router.get("/search/{query}", response_model=UsersResponse)
async def search_users(
    query: str,
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
):
    return UsersResponse(users=redis_backend.search_users(current_user["id"], query, limit=limit))


@users_router.put("/status", response_model=UserStatusResponse)
async def update_status(body: UpdateStatusRequest, current_user: dict = Depends(get_current_user)):
    if body.status not in USER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    result = redis_backend.set_user_status(current_user["id"], body.status)
    logger.info(f"User {current_user['id']} set status to {body.status}")
    return UserStatusResponse(**result)


@users_router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, current_user: dict = Depends(get_current_user)):
    user = redis_backend.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse(user=public_user(user))


@users_router.get("/{user_id}/status", response_model=UserStatusResponse)
async def get_user_status(user_id: int, current_user: dict = Depends(get_current_user)):
    user = redis_backend.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return UserStatusResponse(status=user.get("status", "offline"), last_seen=user.get("last_seen"))


@users_router.get("/{user_id}/stats", response_model=UserStatsResponse)
async def get_user_stats(user_id: int, current_user: dict = Depends(get_current_user)):
    return UserStatsResponse(**redis_backend.user_stats(user_id))
