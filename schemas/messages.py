from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional

from schemas.users import Pagination, UserOut


class ConversationOut(BaseModel):
    id: int
    name: Optional[str] = None
    type: str
    created_by: Optional[int] = None
    created_at: str
    updated_at: str
    last_message: Optional[str] = None
    last_message_time: Optional[str] = None
    unread_count: Optional[int] = None
    participant: Optional[UserOut] = None

class ConversationsResponse(BaseModel):
    conversations: list[ConversationOut]

class ConversationResponse(BaseModel):
    conversation: ConversationOut

class MessageOut(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    message_type: str = "text"
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    is_edited: bool = False
    edited_at: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None

class ConversationMessage(MessageOut):
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None

class CreatedMessage(MessageOut):
    sender: Optional[UserOut] = None

class MessagesResponse(BaseModel):
    messages: list[ConversationMessage]
    pagination: Pagination

class MessageResponse(BaseModel):
    message: MessageOut

class CreatedMessageResponse(BaseModel):
    message: CreatedMessage

class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(min_length=1)
    message_type: Literal["text", "image", "file", "audio", "video"] = Field("text", alias="messageType")
    file_url: Optional[str] = Field(None, alias="fileUrl")
    file_name: Optional[str] = Field(None, alias="fileName")
    file_size: Optional[int] = Field(None, alias="fileSize")

class EditMessageRequest(BaseModel):
    content: str = Field(min_length=1)
