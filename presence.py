from typing import Dict, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)


class PresenceRegistry:
    """Process-local map of authenticated user id -> live connection id.

    Only the relay mutates it, from the event loop, so no locking is needed.
    Nothing is persisted: after a restart every user is offline until they
    authenticate again.
    """

    def __init__(self):
        self._connections: Dict[str, str] = {}

    def bind(self, user_id: str, connection_id: str) -> Optional[str]:
        """Bind user_id to connection_id, last bind wins.

        Returns the connection id that was superseded, if any. That
        connection stays open but stops receiving targeted events.
        """
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection_id
        if previous and previous != connection_id:
            logger.info(f"User {user_id} rebound from connection {previous} to {connection_id}")
        else:
            logger.debug(f"User {user_id} bound to connection {connection_id}")
        return previous if previous != connection_id else None

    def lookup(self, user_id: str) -> Optional[str]:
        return self._connections.get(user_id)

    def unbind(self, connection_id: str, user_id: str) -> bool:
        """Drop the binding for user_id if it still points at connection_id."""
        if self._connections.get(user_id) != connection_id:
            logger.debug(f"Connection {connection_id} no longer bound for user {user_id}, nothing to unbind")
            return False
        del self._connections[user_id]
        logger.debug(f"User {user_id} unbound from connection {connection_id}")
        return True

    def online_user_ids(self) -> List[str]:
        return list(self._connections)

    def __contains__(self, user_id) -> bool:
        return user_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
