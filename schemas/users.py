from pydantic import BaseModel
from typing import Optional


class Pagination(BaseModel):
    limit: int
    offset: int
    count: int

class UserOut(BaseModel):
    id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None
    status: Optional[str] = None
    last_seen: Optional[str] = None
    created_at: Optional[str] = None

class UsersResponse(BaseModel):
    users: list[UserOut]
    pagination: Optional[Pagination] = None

class OnlineUsersResponse(BaseModel):
    online_users: list[UserOut]

class UserResponse(BaseModel):
    user: UserOut

class UserStatusResponse(BaseModel):
    status: str
    last_seen: Optional[str] = None

class UpdateStatusRequest(BaseModel):
    status: str

class UserStatsResponse(BaseModel):
    message_count: int
    conversation_count: int
