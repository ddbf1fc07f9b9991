from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional

from schemas.users import Pagination


class CallParty(BaseModel):
    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None

class CallOut(BaseModel):
    id: int
    call_type: str
    status: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration: Optional[int] = None
    created_at: str
    caller: CallParty
    receiver: CallParty
    is_incoming: bool

class CallResponse(BaseModel):
    call: CallOut

class CallHistoryResponse(BaseModel):
    calls: list[CallOut]
    pagination: Pagination

class CallTypeStats(BaseModel):
    type: str
    count: int
    total_duration: int

class CallStats(BaseModel):
    total_calls: int
    successful_calls: int
    total_duration: int
    calls_by_type: list[CallTypeStats]

class CallStatsResponse(BaseModel):
    stats: CallStats

class CreateCallRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    receiver_id: int = Field(alias="receiverId")
    call_type: Literal["audio", "video"] = Field(alias="callType")

class UpdateCallStatusRequest(BaseModel):
    status: Literal["ringing", "answered", "ended", "missed", "rejected"]
