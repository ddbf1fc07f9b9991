import asyncio
import inspect
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from auth import AuthError, verify_token
from backend import utcnow
from logging_config import get_logger
from presence import PresenceRegistry

logger = get_logger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]


class RelayError(Exception):
    """Base class for inbound events the relay refuses to handle."""


class UnknownEvent(RelayError):
    pass


class InvalidPayload(RelayError):
    pass


@dataclass
class Connection:
    """One live WebSocket session as seen by the relay."""

    connection_id: str
    send: SendCallable
    user_id: Optional[str] = None
    rooms: Set[str] = field(default_factory=set)

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


def _field(data: Any, name: str, required: bool = True):
    if not isinstance(data, dict):
        raise InvalidPayload(f"Expected an object with '{name}'")
    value = data.get(name)
    if required and value in (None, ""):
        raise InvalidPayload(f"Missing '{name}'")
    return value


def _scalar_or_field(data: Any, name: str) -> str:
    """Accept either a bare value or {name: value}."""
    if isinstance(data, (str, int)) and not isinstance(data, bool):
        value = data
    else:
        value = _field(data, name)
    if value in (None, ""):
        raise InvalidPayload(f"Missing '{name}'")
    return str(value)


class SignalingRelay:
    """Forwards chat and call-setup events between live connections.

    Room events fan out to every other member of the room. Call events are
    targeted at one user through the presence registry and are dropped
    without notice when that user has no live connection. Nothing is
    persisted and no payload is inspected beyond the routing fields.
    """

    def __init__(self, registry: PresenceRegistry, verifier: Callable = verify_token):
        self.registry = registry
        self.verifier = verifier
        # Format: {connection_id: Connection}
        self.connections: Dict[str, Connection] = {}
        # Format: {room_id: {connection_id, ...}}
        self.rooms: Dict[str, Set[str]] = {}

        self._handlers = {
            "authenticate": self.authenticate,
            "join_room": self.join_room,
            "leave_room": self.leave_room,
            "send_message": self.send_message,
            "typing": self.typing,
            "stop_typing": self.stop_typing,
            "call_user": self.call_user,
            "call_accepted": self.call_accepted,
            "call_rejected": self.call_rejected,
            "call_ended": self.call_ended,
            "offer": self.offer,
            "answer": self.answer,
            "ice_candidate": self.ice_candidate,
        }

    # Connection lifecycle

    def connect(self, send: SendCallable) -> Connection:
        connection = Connection(connection_id=uuid.uuid4().hex, send=send)
        self.connections[connection.connection_id] = connection
        logger.info(f"Connection {connection.connection_id} opened ({len(self.connections)} live)")
        return connection

    def disconnect(self, connection: Connection):
        for room_id in list(connection.rooms):
            self._leave(connection, room_id)
        if connection.authenticated:
            self.registry.unbind(connection.connection_id, connection.user_id)
        self.connections.pop(connection.connection_id, None)
        logger.info(f"Connection {connection.connection_id} closed (user: {connection.user_id})")

    async def emit(self, connection: Connection, event: str, data=None) -> bool:
        """Send one event frame to a connection. Failures are logged, never raised."""
        try:
            await connection.send({"event": event, "data": data})
            return True
        except Exception as e:
            logger.warning(f"Failed to deliver '{event}' to connection {connection.connection_id}: {e}")
            return False

    async def dispatch(self, connection: Connection, event: str, data=None):
        handler = self._handlers.get(event)
        if handler is None:
            raise UnknownEvent(f"Unknown event '{event}'")
        logger.debug(f"Dispatching '{event}' from connection {connection.connection_id}")
        await handler(connection, data)

    # Authenticate handshake

    async def authenticate(self, connection: Connection, data):
        token = data.get("token") if isinstance(data, dict) else data
        try:
            user_id = self.verifier(token)
            if inspect.isawaitable(user_id):
                user_id = await user_id
        except AuthError as e:
            logger.warning(f"Authentication failed for connection {connection.connection_id}: {e.reason}")
            await self.emit(connection, "auth_error", {"message": e.reason})
            return

        user_id = str(user_id)
        # The connection may have dropped while the credential was being checked
        if connection.connection_id not in self.connections:
            logger.debug(f"Connection {connection.connection_id} closed before authentication completed")
            return

        if connection.authenticated and connection.user_id != user_id:
            self.registry.unbind(connection.connection_id, connection.user_id)
        connection.user_id = user_id
        superseded = self.registry.bind(user_id, connection.connection_id)
        if superseded:
            logger.info(f"Connection {superseded} superseded by {connection.connection_id} for user {user_id}")
        logger.info(f"Connection {connection.connection_id} authenticated as user {user_id}")
        await self.emit(connection, "authenticated", {"userId": user_id})

    # Rooms

    async def join_room(self, connection: Connection, data):
        room_id = _scalar_or_field(data, "roomId")
        self.rooms.setdefault(room_id, set()).add(connection.connection_id)
        connection.rooms.add(room_id)
        logger.info(f"Connection {connection.connection_id} joined room {room_id} ({len(self.rooms[room_id])} members)")

    async def leave_room(self, connection: Connection, data):
        room_id = _scalar_or_field(data, "roomId")
        self._leave(connection, room_id)

    def _leave(self, connection: Connection, room_id: str):
        connection.rooms.discard(room_id)
        members = self.rooms.get(room_id)
        if members is None:
            return
        members.discard(connection.connection_id)
        if not members:
            del self.rooms[room_id]
            logger.debug(f"Room {room_id} is empty, removed")

    def room_members(self, room_id: str) -> Set[str]:
        return set(self.rooms.get(room_id, ()))

    async def _broadcast(self, sender: Connection, room_id: str, event: str, payload: dict) -> int:
        targets = [
            self.connections[cid] for cid in self.rooms.get(room_id, ())
            if cid != sender.connection_id and cid in self.connections
        ]
        if not targets:
            logger.debug(f"No other members in room {room_id} for '{event}'")
            return 0
        await asyncio.gather(*(self.emit(target, event, payload) for target in targets))
        logger.debug(f"Broadcast '{event}' to {len(targets)} connections in room {room_id}")
        return len(targets)

    async def send_message(self, connection: Connection, data):
        room_id = str(_field(data, "roomId"))
        payload = dict(data)
        payload["timestamp"] = utcnow()
        await self._broadcast(connection, room_id, "receive_message", payload)

    async def typing(self, connection: Connection, data):
        room_id = str(_field(data, "roomId"))
        await self._broadcast(connection, room_id, "user_typing", {"userId": connection.user_id, "roomId": room_id})

    async def stop_typing(self, connection: Connection, data):
        room_id = str(_field(data, "roomId"))
        await self._broadcast(connection, room_id, "user_stop_typing", {"userId": connection.user_id, "roomId": room_id})

    # Targeted call signaling

    async def _forward(self, source: Connection, user_id, event: str, payload: dict) -> bool:
        """Deliver event to the live connection of user_id. Offline targets are dropped silently."""
        connection_id = self.registry.lookup(str(user_id))
        target = self.connections.get(connection_id) if connection_id else None
        if target is None:
            logger.debug(f"Dropping '{event}' from user {source.user_id}: user {user_id} is offline")
            return False
        logger.debug(f"Forwarding '{event}' from user {source.user_id} to user {user_id}")
        return await self.emit(target, event, payload)

    async def call_user(self, connection: Connection, data):
        target_user_id = _field(data, "targetUserId")
        await self._forward(connection, target_user_id, "incoming_call", {
            "callerId": connection.user_id,
            "callerName": data.get("callerName"),
            "callType": data.get("callType"),
        })

    async def call_accepted(self, connection: Connection, data):
        caller_id = _field(data, "callerId")
        await self._forward(connection, caller_id, "call_accepted", {"targetUserId": connection.user_id})

    async def call_rejected(self, connection: Connection, data):
        caller_id = _field(data, "callerId")
        await self._forward(connection, caller_id, "call_rejected", {"targetUserId": connection.user_id})

    async def call_ended(self, connection: Connection, data):
        target_user_id = _field(data, "targetUserId")
        await self._forward(connection, target_user_id, "call_ended", {"userId": connection.user_id})

    async def offer(self, connection: Connection, data):
        target_user_id = _field(data, "targetUserId")
        await self._forward(connection, target_user_id, "offer", {
            "offer": data.get("offer"),
            "callerId": connection.user_id,
        })

    async def answer(self, connection: Connection, data):
        caller_id = _field(data, "callerId")
        await self._forward(connection, caller_id, "answer", {
            "answer": data.get("answer"),
            "targetUserId": connection.user_id,
        })

    async def ice_candidate(self, connection: Connection, data):
        target_user_id = _field(data, "targetUserId")
        await self._forward(connection, target_user_id, "ice_candidate", {
            "candidate": data.get("candidate"),
            "userId": connection.user_id,
        })
