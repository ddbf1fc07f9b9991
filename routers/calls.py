from fastapi import APIRouter, Depends, HTTPException, Query

from auth import get_current_user
from backend import redis_backend
from logging_config import get_logger
from schemas.calls import (
    CallHistoryResponse,
    CallResponse,
    CallStatsResponse,
    CreateCallRequest,
    UpdateCallStatusRequest,
)
from schemas.users import Pagination

logger = get_logger(__name__)

calls_router = APIRouter(prefix="/api/calls", tags=["calls"])


def _party(user_id: int) -> dict:
    user = redis_backend.get_user(user_id) or {}
    return {
        "id": user_id,
        "username": user.get("username"),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "avatar_url": user.get("avatar_url"),
    }


def format_call(call: dict, viewer_id: int) -> dict:
    return {
        "id": call["id"],
        "call_type": call["call_type"],
        "status": call["status"],
        "start_time": call.get("start_time"),
        "end_time": call.get("end_time"),
        "duration": call.get("duration"),
        "created_at": call["created_at"],
        "caller": _party(call["caller_id"]),
        "receiver": _party(call["receiver_id"]),
        "is_incoming": call["receiver_id"] == viewer_id,
    }


def get_participant_call(call_id: int, user_id: int) -> dict:
    call = redis_backend.get_call(call_id)
    if not call or user_id not in (call["caller_id"], call["receiver_id"]):
        raise HTTPException(status_code=404, detail="Call not found or access denied")
    return call


@calls_router.get("/history", response_model=CallHistoryResponse)
async def call_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
):
    calls = redis_backend.call_history(current_user["id"], limit=limit, offset=offset)
    return CallHistoryResponse(
        calls=[format_call(call, current_user["id"]) for call in calls],
        pagination=Pagination(limit=limit, offset=offset, count=len(calls)),
    )


@calls_router.get("/stats", response_model=CallStatsResponse)
async def call_stats(current_user: dict = Depends(get_current_user)):
    return CallStatsResponse(stats=redis_backend.call_stats(current_user["id"]))


@calls_router.post("/", status_code=201, response_model=CallResponse)
async def create_call(body: CreateCallRequest, current_user: dict = Depends(get_current_user)):
    """Record a new call in the `initiated` state.

    Signaling itself goes over the WebSocket relay; clients move the record
    through ringing/answered/ended with PUT /{call_id}/status.
    """
    if body.receiver_id == current_user["id"]:
        raise HTTPException(status_code=400, detail="Cannot call yourself")
    if not redis_backend.get_user(body.receiver_id):
        raise HTTPException(status_code=404, detail="Receiver not found")

    call = redis_backend.create_call(current_user["id"], body.receiver_id, body.call_type)
    return CallResponse(call=format_call(call, current_user["id"]))


@calls_router.put("/{call_id}/status", response_model=CallResponse)
async def update_call_status(call_id: int, body: UpdateCallStatusRequest, current_user: dict = Depends(get_current_user)):
    get_participant_call(call_id, current_user["id"])
    call = redis_backend.update_call_status(call_id, body.status)
    if not call:
        raise HTTPException(status_code=404, detail="Call not found or access denied")
    return CallResponse(call=format_call(call, current_user["id"]))


@calls_router.get("/{call_id}", response_model=CallResponse)
async def get_call(call_id: int, current_user: dict = Depends(get_current_user)):
    call = get_participant_call(call_id, current_user["id"])
    return CallResponse(call=format_call(call, current_user["id"]))


@calls_router.delete("/{call_id}")
async def delete_call(call_id: int, current_user: dict = Depends(get_current_user)):
    get_participant_call(call_id, current_user["id"])
    redis_backend.delete_call(call_id)
    logger.info(f"User {current_user['id']} deleted call {call_id}")
    return {"message": "Call deleted successfully"}
