import time
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import redis

from constants import REDIS_DB, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT
from logging_config import get_logger
from redis_keys import (
    REDIS_CALL_KEY,
    REDIS_CONVERSATION_KEY,
    REDIS_CONVERSATION_MESSAGES,
    REDIS_CONVERSATION_PARTICIPANTS,
    REDIS_DIRECT_KEY,
    REDIS_ID_COUNTER,
    REDIS_MESSAGE_KEY,
    REDIS_MESSAGE_READS,
    REDIS_RATE_LIMIT_KEY,
    REDIS_USER_CALLS,
    REDIS_USER_CONVERSATIONS,
    REDIS_USER_KEY,
    REDIS_USER_MESSAGES,
    REDIS_USERNAME_INDEX,
    REDIS_USERS_INDEX,
)

logger = get_logger(__name__)

# redis-py connects lazily, the first command opens the socket
redis_client = redis.Redis(
    host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True
)

INT_FIELDS = {"id", "sender_id", "conversation_id", "created_by", "caller_id", "receiver_id", "duration", "file_size"}
BOOL_FIELDS = {"is_edited"}

PUBLIC_USER_FIELDS = ("id", "username", "first_name", "last_name", "avatar_url", "status", "last_seen", "created_at")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode(row: dict) -> dict:
    """Convert a row to a Redis hash mapping, skipping None values."""
    encoded = {}
    for k, v in row.items():
        if v is None:
            continue
        if isinstance(v, bool):
            encoded[k] = "1" if v else "0"
        else:
            encoded[k] = str(v)
    return encoded


def _decode(data: dict) -> Optional[dict]:
    if not data:
        return None
    result = {}
    for k, v in data.items():
        if k in INT_FIELDS:
            try:
                result[k] = int(v)
            except (TypeError, ValueError):
                result[k] = v
        elif k in BOOL_FIELDS:
            result[k] = v == "1"
        else:
            result[k] = v
    return result


def public_user(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    return {field: user.get(field) for field in PUBLIC_USER_FIELDS}


class RedisBackend:
    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis_client = client if client is not None else redis_client
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def _next_id(self, kind: str) -> int:
        return int(self.redis_client.incr(REDIS_ID_COUNTER.format(kind=kind)))

    def _get_row(self, key: str) -> Optional[dict]:
        return _decode(self.redis_client.hgetall(key))

    # Users

    def create_user(self, username: str, email: str, first_name: str = "", last_name: str = "",
                    avatar_url: Optional[str] = None, status: str = "offline") -> dict:
        user_id = self._next_id("user")
        if not self.redis_client.hsetnx(REDIS_USERNAME_INDEX, username.lower(), user_id):
            raise ValueError(f"Username '{username}' is already taken")
        now = utcnow()
        user = {
            "id": user_id,
            "username": username,
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "avatar_url": avatar_url,
            "status": status,
            "last_seen": now,
            "created_at": now,
        }
        pipe = self.redis_client.pipeline()
        pipe.hset(REDIS_USER_KEY.format(user_id=user_id), mapping=_encode(user))
        pipe.zadd(REDIS_USERS_INDEX, {user_id: user_id})
        pipe.execute()
        logger.info(f"Created user {user_id} ({username})")
        return user

    def get_user(self, user_id) -> Optional[dict]:
        return self._get_row(REDIS_USER_KEY.format(user_id=user_id))

    def _all_users(self) -> List[dict]:
        user_ids = self.redis_client.zrange(REDIS_USERS_INDEX, 0, -1)
        users = []
        for uid in user_ids:
            user = self.get_user(uid)
            if user:
                users.append(user)
        return users

    @staticmethod
    def _by_presence(users: List[dict]) -> List[dict]:
        # status DESC, last_seen DESC
        return sorted(users, key=lambda u: (u.get("status") or "", u.get("last_seen") or ""), reverse=True)

    def list_users(self, exclude_id: int, search: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[dict]:
        users = [u for u in self._all_users() if u["id"] != exclude_id]
        if search:
            needle = search.lower()
            users = [
                u for u in users
                if any(needle in (u.get(f) or "").lower() for f in ("username", "first_name", "last_name"))
            ]
        users = self._by_presence(users)
        return [public_user(u) for u in users[offset:offset + limit]]

    def online_users(self, exclude_id: int) -> List[dict]:
        users = [u for u in self._all_users() if u["id"] != exclude_id and u.get("status") == "online"]
        users.sort(key=lambda u: u.get("last_seen") or "", reverse=True)
        return [public_user(u) for u in users]

    def search_users(self, exclude_id: int, query: str, limit: int = 10) -> List[dict]:
        needle = query.lower()

        def rank(user):
            if needle in (user.get("username") or "").lower():
                return 1
            if needle in (user.get("first_name") or "").lower() or needle in (user.get("last_name") or "").lower():
                return 2
            return 3

        matches = [
            u for u in self._all_users()
            if u["id"] != exclude_id
            and any(needle in (u.get(f) or "").lower() for f in ("username", "first_name", "last_name", "email"))
        ]
        # sorted() is stable, so rank wins and presence order breaks ties
        matches = sorted(self._by_presence(matches), key=rank)
        return [public_user(u) for u in matches[:limit]]

    def set_user_status(self, user_id, status: str) -> dict:
        now = utcnow()
        self.redis_client.hset(REDIS_USER_KEY.format(user_id=user_id), mapping={"status": status, "last_seen": now})
        logger.debug(f"User {user_id} status set to {status}")
        return {"status": status, "last_seen": now}

    def user_stats(self, user_id) -> dict:
        return {
            "message_count": self.redis_client.scard(REDIS_USER_MESSAGES.format(user_id=user_id)),
            "conversation_count": self.redis_client.scard(REDIS_USER_CONVERSATIONS.format(user_id=user_id)),
        }

    # Conversations

    def get_conversation(self, conversation_id) -> Optional[dict]:
        return self._get_row(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id))

    def is_participant(self, conversation_id, user_id) -> bool:
        key = REDIS_CONVERSATION_PARTICIPANTS.format(conversation_id=conversation_id)
        return bool(self.redis_client.sismember(key, str(user_id)))

    def get_participants(self, conversation_id) -> List[int]:
        key = REDIS_CONVERSATION_PARTICIPANTS.format(conversation_id=conversation_id)
        return sorted(int(uid) for uid in self.redis_client.smembers(key))

    def get_or_create_direct_conversation(self, user_id: int, other_id: int) -> Tuple[dict, bool]:
        """Return (conversation, created) for the direct conversation between two users."""
        low, high = sorted((int(user_id), int(other_id)))
        direct_key = REDIS_DIRECT_KEY.format(low=low, high=high)

        existing_id = self.redis_client.get(direct_key)
        if existing_id:
            conversation = self.get_conversation(existing_id)
            if conversation:
                return conversation, False

        conversation_id = self._next_id("conversation")
        # Two concurrent requests for the same pair must end up on one conversation
        if not self.redis_client.setnx(direct_key, conversation_id):
            existing_id = self.redis_client.get(direct_key)
            conversation = self.get_conversation(existing_id)
            if conversation:
                return conversation, False
            self.redis_client.set(direct_key, conversation_id)

        now = utcnow()
        conversation = {
            "id": conversation_id,
            "name": None,
            "type": "direct",
            "created_by": int(user_id),
            "created_at": now,
            "updated_at": now,
        }
        pipe = self.redis_client.pipeline()
        pipe.hset(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id), mapping=_encode(conversation))
        pipe.sadd(REDIS_CONVERSATION_PARTICIPANTS.format(conversation_id=conversation_id), low, high)
        pipe.sadd(REDIS_USER_CONVERSATIONS.format(user_id=low), conversation_id)
        pipe.sadd(REDIS_USER_CONVERSATIONS.format(user_id=high), conversation_id)
        pipe.execute()
        logger.info(f"Created direct conversation {conversation_id} between users {low} and {high}")
        return conversation, True

    def touch_conversation(self, conversation_id):
        self.redis_client.hset(
            REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id), "updated_at", utcnow()
        )

    def list_conversations(self, user_id: int) -> List[dict]:
        conversation_ids = self.redis_client.smembers(REDIS_USER_CONVERSATIONS.format(user_id=user_id))
        conversations = []
        for cid in conversation_ids:
            conversation = self.get_conversation(cid)
            if not conversation:
                continue
            conversation.setdefault("name", None)
            last = self.last_message(cid)
            conversation["last_message"] = last["content"] if last else None
            conversation["last_message_time"] = last["created_at"] if last else None
            conversation["unread_count"] = self.unread_count(cid, user_id)
            conversation["participant"] = None
            if conversation.get("type") == "direct":
                others = [uid for uid in self.get_participants(cid) if uid != int(user_id)]
                other = public_user(self.get_user(others[0])) if others else None
                if other:
                    conversation["participant"] = other
                    if not conversation["name"]:
                        conversation["name"] = f"{other['first_name']} {other['last_name']}".strip()
            conversations.append(conversation)
        conversations.sort(key=lambda c: c.get("updated_at") or "", reverse=True)
        return conversations

    # Messages

    def create_message(self, conversation_id: int, sender_id: int, content: str, message_type: str = "text",
                       file_url: Optional[str] = None, file_name: Optional[str] = None,
                       file_size: Optional[int] = None) -> dict:
        message_id = self._next_id("message")
        now = utcnow()
        message = {
            "id": message_id,
            "conversation_id": int(conversation_id),
            "sender_id": int(sender_id),
            "content": content,
            "message_type": message_type,
            "file_url": file_url,
            "file_name": file_name,
            "file_size": file_size,
            "is_edited": False,
            "edited_at": None,
            "created_at": now,
            "updated_at": now,
        }
        pipe = self.redis_client.pipeline()
        pipe.hset(REDIS_MESSAGE_KEY.format(message_id=message_id), mapping=_encode(message))
        pipe.zadd(REDIS_CONVERSATION_MESSAGES.format(conversation_id=conversation_id), {message_id: message_id})
        pipe.sadd(REDIS_USER_MESSAGES.format(user_id=sender_id), message_id)
        pipe.hset(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id), "updated_at", now)
        pipe.execute()
        logger.debug(f"Stored message {message_id} in conversation {conversation_id}")
        return message

    def get_message(self, message_id) -> Optional[dict]:
        message = self._get_row(REDIS_MESSAGE_KEY.format(message_id=message_id))
        if message:
            for field in ("file_url", "file_name", "file_size", "edited_at"):
                message.setdefault(field, None)
        return message

    def edit_message(self, message_id, content: str) -> Optional[dict]:
        now = utcnow()
        self.redis_client.hset(
            REDIS_MESSAGE_KEY.format(message_id=message_id),
            mapping={"content": content, "is_edited": "1", "edited_at": now, "updated_at": now},
        )
        return self.get_message(message_id)

    def delete_message(self, message_id) -> bool:
        message = self.get_message(message_id)
        if not message:
            return False
        pipe = self.redis_client.pipeline()
        pipe.zrem(REDIS_CONVERSATION_MESSAGES.format(conversation_id=message["conversation_id"]), message_id)
        pipe.srem(REDIS_USER_MESSAGES.format(user_id=message["sender_id"]), message_id)
        pipe.delete(REDIS_MESSAGE_KEY.format(message_id=message_id), REDIS_MESSAGE_READS.format(message_id=message_id))
        pipe.execute()
        logger.info(f"Deleted message {message_id}")
        return True

    def list_messages(self, conversation_id, limit: int = 50, offset: int = 0) -> List[dict]:
        """Newest `limit` messages after skipping `offset`, returned oldest first."""
        if limit <= 0:
            return []
        key = REDIS_CONVERSATION_MESSAGES.format(conversation_id=conversation_id)
        message_ids = self.redis_client.zrevrange(key, offset, offset + limit - 1)
        messages = []
        for mid in reversed(message_ids):
            message = self.get_message(mid)
            if not message:
                continue
            sender = self.get_user(message["sender_id"]) or {}
            message["username"] = sender.get("username")
            message["first_name"] = sender.get("first_name")
            message["last_name"] = sender.get("last_name")
            message["avatar_url"] = sender.get("avatar_url")
            messages.append(message)
        return messages

    def last_message(self, conversation_id) -> Optional[dict]:
        key = REDIS_CONVERSATION_MESSAGES.format(conversation_id=conversation_id)
        latest = self.redis_client.zrevrange(key, 0, 0)
        return self.get_message(latest[0]) if latest else None

    def _incoming_message_ids(self, conversation_id, user_id) -> List[str]:
        key = REDIS_CONVERSATION_MESSAGES.format(conversation_id=conversation_id)
        incoming = []
        for mid in self.redis_client.zrange(key, 0, -1):
            sender_id = self.redis_client.hget(REDIS_MESSAGE_KEY.format(message_id=mid), "sender_id")
            if sender_id is not None and sender_id != str(user_id):
                incoming.append(mid)
        return incoming

    def unread_count(self, conversation_id, user_id) -> int:
        return sum(
            1 for mid in self._incoming_message_ids(conversation_id, user_id)
            if not self.redis_client.hexists(REDIS_MESSAGE_READS.format(message_id=mid), str(user_id))
        )

    def mark_conversation_read(self, conversation_id, user_id) -> int:
        """Record a read receipt for every message from other participants. Returns how many were new."""
        now = utcnow()
        marked = 0
        for mid in self._incoming_message_ids(conversation_id, user_id):
            marked += self.redis_client.hsetnx(REDIS_MESSAGE_READS.format(message_id=mid), str(user_id), now)
        if marked:
            logger.debug(f"User {user_id} read {marked} messages in conversation {conversation_id}")
        return marked

    # Calls

    def create_call(self, caller_id: int, receiver_id: int, call_type: str) -> dict:
        call_id = self._next_id("call")
        call = {
            "id": call_id,
            "caller_id": int(caller_id),
            "receiver_id": int(receiver_id),
            "call_type": call_type,
            "status": "initiated",
            "start_time": None,
            "end_time": None,
            "duration": None,
            "created_at": utcnow(),
        }
        pipe = self.redis_client.pipeline()
        pipe.hset(REDIS_CALL_KEY.format(call_id=call_id), mapping=_encode(call))
        pipe.zadd(REDIS_USER_CALLS.format(user_id=caller_id), {call_id: call_id})
        pipe.zadd(REDIS_USER_CALLS.format(user_id=receiver_id), {call_id: call_id})
        pipe.execute()
        logger.info(f"Created {call_type} call {call_id} from user {caller_id} to user {receiver_id}")
        return call

    def get_call(self, call_id) -> Optional[dict]:
        call = self._get_row(REDIS_CALL_KEY.format(call_id=call_id))
        if call:
            for field in ("start_time", "end_time", "duration"):
                call.setdefault(field, None)
        return call

    def update_call_status(self, call_id, status: str) -> Optional[dict]:
        """Apply a status transition, stamping start/end times and duration."""
        call = self.get_call(call_id)
        if not call:
            return None

        updates = {"status": status}
        now = datetime.now(timezone.utc)
        if status == "answered" and not call["start_time"]:
            updates["start_time"] = now.isoformat()
        if status == "ended" and call["start_time"]:
            started = datetime.fromisoformat(call["start_time"])
            updates["end_time"] = now.isoformat()
            updates["duration"] = max(0, int((now - started).total_seconds()))

        self.redis_client.hset(REDIS_CALL_KEY.format(call_id=call_id), mapping=_encode(updates))
        logger.info(f"Call {call_id} status {call['status']} -> {status}")
        return self.get_call(call_id)

    def call_history(self, user_id, limit: int = 20, offset: int = 0) -> List[dict]:
        if limit <= 0:
            return []
        call_ids = self.redis_client.zrevrange(REDIS_USER_CALLS.format(user_id=user_id), offset, offset + limit - 1)
        calls = []
        for cid in call_ids:
            call = self.get_call(cid)
            if call:
                calls.append(call)
        return calls

    def call_stats(self, user_id) -> dict:
        call_ids = self.redis_client.zrange(REDIS_USER_CALLS.format(user_id=user_id), 0, -1)
        total = 0
        successful = 0
        total_duration = 0
        by_type = {}
        for cid in call_ids:
            call = self.get_call(cid)
            if not call:
                continue
            total += 1
            entry = by_type.setdefault(call["call_type"], {"type": call["call_type"], "count": 0, "total_duration": 0})
            entry["count"] += 1
            # answered at some point, whether or not it has ended since
            if call["start_time"]:
                successful += 1
                total_duration += call["duration"] or 0
                entry["total_duration"] += call["duration"] or 0
        return {
            "total_calls": total,
            "successful_calls": successful,
            "total_duration": total_duration,
            "calls_by_type": list(by_type.values()),
        }

    def delete_call(self, call_id) -> bool:
        call = self.get_call(call_id)
        if not call:
            return False
        pipe = self.redis_client.pipeline()
        pipe.zrem(REDIS_USER_CALLS.format(user_id=call["caller_id"]), call_id)
        pipe.zrem(REDIS_USER_CALLS.format(user_id=call["receiver_id"]), call_id)
        pipe.delete(REDIS_CALL_KEY.format(call_id=call_id))
        pipe.execute()
        logger.info(f"Deleted call {call_id}")
        return True

    # Rate limiting

    def hit_rate_limit(self, client: str, limit: int, window_seconds: int) -> Tuple[int, bool]:
        """Count one request for client in the current fixed window. Returns (count, allowed)."""
        window = int(time.time() // window_seconds)
        key = REDIS_RATE_LIMIT_KEY.format(client=client, window=window)
        count = int(self.redis_client.incr(key))
        if count == 1:
            self.redis_client.expire(key, window_seconds)
        return count, count <= limit


redis_backend = RedisBackend()
