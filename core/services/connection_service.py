"""
Connection registry - tracks which live chat connections belong to which user.

Each user has a "room": the set of that user's joined connections. Server
events addressed to a user are delivered only to connections in that user's
room, so one user may hold several simultaneous sessions (tabs, devices)
without ever receiving another user's events.

The registry is an explicit object owned by the application (created in the
lifespan handler and stored on app.state), not a module-level singleton.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class ConnectionServiceError(Exception):
    """Base exception for connection registry errors."""

    pass


class Emitter(Protocol):
    """Anything that can receive a named server event."""

    connection_id: str

    async def emit(self, event: str, data: Any = None) -> bool:
        ...


class ConnectionRegistry:
    """
    In-process registry of joined chat connections, keyed by user id.

    Membership is many-to-one: a connection belongs to exactly one user's
    room, a user's room may hold many connections.
    """

    def __init__(self):
        # Structure: {user_id: Set[connection]}
        self._rooms: Dict[str, Set[Emitter]] = {}
        # Structure: {connection_id: {"user_id": str, "joined_at": str}}
        self._metadata: Dict[str, Dict[str, str]] = {}

    def join(self, user_id: str, connection: Emitter) -> None:
        """
        Add a connection to user_id's room.

        Joining twice is a no-op.

        Raises:
            ConnectionServiceError: If the connection is already in another user's room
        """
        existing = self._metadata.get(connection.connection_id)
        if existing and existing["user_id"] != user_id:
            raise ConnectionServiceError(
                f"Connection {connection.connection_id} already joined room of user {existing['user_id']}"
            )

        self._rooms.setdefault(user_id, set()).add(connection)
        self._metadata[connection.connection_id] = {
            "user_id": user_id,
            "joined_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info(
            "Connection %s joined room of user %s (connections=%d)",
            connection.connection_id,
            user_id,
            len(self._rooms[user_id]),
        )

    def leave(self, connection: Emitter) -> None:
        """Remove a connection from its room. No-op if it never joined."""
        metadata = self._metadata.pop(connection.connection_id, None)
        if not metadata:
            return

        user_id = metadata["user_id"]
        room = self._rooms.get(user_id)
        if room is not None:
            room.discard(connection)
            if not room:
                del self._rooms[user_id]

        logger.info(
            "Connection %s left room of user %s (remaining=%d)",
            connection.connection_id,
            user_id,
            len(self._rooms.get(user_id, ())),
        )

    def room_of(self, connection: Emitter) -> Optional[str]:
        """User id whose room the connection joined, or None."""
        metadata = self._metadata.get(connection.connection_id)
        return metadata["user_id"] if metadata else None

    def connections_for(self, user_id: str) -> Set[Emitter]:
        """Snapshot of the connections currently in user_id's room."""
        return set(self._rooms.get(user_id, ()))

    def count(self, user_id: Optional[str] = None) -> int:
        """Number of joined connections, overall or for one user."""
        if user_id is not None:
            return len(self._rooms.get(user_id, ()))
        return len(self._metadata)

    async def emit_to_user(self, user_id: str, event: str, data: Any = None) -> int:
        """
        Deliver an event to every connection in user_id's room.

        Returns:
            Number of connections the event was delivered to
        """
        delivered = 0
        for connection in self.connections_for(user_id):
            if await connection.emit(event, data):
                delivered += 1

        logger.debug("Emitted %s to user %s: delivered=%d", event, user_id, delivered)
        return delivered
