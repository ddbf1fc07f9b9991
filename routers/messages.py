from fastapi import APIRouter, Depends, HTTPException, Query

from auth import get_current_user
from backend import public_user, redis_backend
from logging_config import get_logger
from schemas.messages import (
    ConversationResponse,
    ConversationsResponse,
    CreatedMessageResponse,
    EditMessageRequest,
    MessageResponse,
    MessagesResponse,
    SendMessageRequest,
)
from schemas.users import Pagination

logger = get_logger(__name__)

messages_router = APIRouter(prefix="/api/messages", tags=["messages"])


def require_participant(conversation_id: int, user_id: int):
    if not redis_backend.is_participant(conversation_id, user_id):
        logger.warning(f"User {user_id} denied access to conversation {conversation_id}")
        raise HTTPException(status_code=403, detail="Access denied")


def require_own_message(message_id: int, user_id: int) -> dict:
    message = redis_backend.get_message(message_id)
    if not message or message["sender_id"] != user_id:
        raise HTTPException(status_code=404, detail="Message not found or access denied")
    return message


@messages_router.get("/conversations", response_model=ConversationsResponse)
async def list_conversations(current_user: dict = Depends(get_current_user)):
    conversations = redis_backend.list_conversations(current_user["id"])
    return ConversationsResponse(conversations=conversations)


@messages_router.get("/conversation/{user_id}", response_model=ConversationResponse)
async def get_or_create_conversation(user_id: int, current_user: dict = Depends(get_current_user)):
    """Return the direct conversation with user_id, creating it on first use."""
    if user_id == current_user["id"]:
        raise HTTPException(status_code=400, detail="Cannot create conversation with yourself")
    if not redis_backend.get_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")

    conversation, created = redis_backend.get_or_create_direct_conversation(current_user["id"], user_id)
    if created:
        logger.info(f"User {current_user['id']} started conversation {conversation['id']} with user {user_id}")
    return ConversationResponse(conversation=conversation)


@messages_router.get("/conversation/{conversation_id}/messages", response_model=MessagesResponse)
async def get_messages(
    conversation_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
):
    """Page of messages, oldest first. Fetching marks the whole conversation as read."""
    require_participant(conversation_id, current_user["id"])

    messages = redis_backend.list_messages(conversation_id, limit=limit, offset=offset)
    redis_backend.mark_conversation_read(conversation_id, current_user["id"])

    return MessagesResponse(
        messages=messages,
        pagination=Pagination(limit=limit, offset=offset, count=len(messages)),
    )


@messages_router.post("/conversation/{conversation_id}/messages", status_code=201,
                      response_model=CreatedMessageResponse)
async def send_message(conversation_id: int, body: SendMessageRequest, current_user: dict = Depends(get_current_user)):
    require_participant(conversation_id, current_user["id"])

    message = redis_backend.create_message(
        conversation_id,
        current_user["id"],
        body.content,
        message_type=body.message_type,
        file_url=body.file_url,
        file_name=body.file_name,
        file_size=body.file_size,
    )
    message["sender"] = public_user(current_user)
    logger.info(f"User {current_user['id']} sent message {message['id']} to conversation {conversation_id}")
    return CreatedMessageResponse(message=message)


@messages_router.put("/messages/{message_id}", response_model=MessageResponse)
async def edit_message(message_id: int, body: EditMessageRequest, current_user: dict = Depends(get_current_user)):
    require_own_message(message_id, current_user["id"])
    message = redis_backend.edit_message(message_id, body.content)
    logger.info(f"User {current_user['id']} edited message {message_id}")
    return MessageResponse(message=message)


@messages_router.delete("/messages/{message_id}")
async def delete_message(message_id: int, current_user: dict = Depends(get_current_user)):
    require_own_message(message_id, current_user["id"])
    redis_backend.delete_message(message_id)
    return {"message": "Message deleted successfully"}


@messages_router.post("/conversation/{conversation_id}/read")
async def mark_as_read(conversation_id: int, current_user: dict = Depends(get_current_user)):
    require_participant(conversation_id, current_user["id"])
    marked = redis_backend.mark_conversation_read(conversation_id, current_user["id"])
    return {"message": "Messages marked as read", "marked": marked}
