"""Presence registry: which users are reachable, and on which connection.

The registry keeps a bidirectional mapping between user IDs and live
connections and enforces one session per user. It owns every registered
Connection; other components reach a user only through ``resolve``,
``relay`` and ``send``, never through the maps themselves.

Thread Safety:
    Designed for a single asyncio event loop. Map mutations are serialized
    with an ``asyncio.Lock`` because ``register`` awaits while closing a
    displaced connection. The lock is never held while broadcasting.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from friendstalk.events import EventType

from .connection import SESSION_SUPERSEDED_CLOSE_CODE, Connection

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Bidirectional userId ↔ connection map with single-session enforcement."""

    def __init__(self) -> None:
        # connection_id -> Connection (every registered, live connection)
        self._connections: Dict[str, Connection] = {}

        # user_id -> connection_id (at most one per user)
        self._user_to_connection: Dict[str, str] = {}

        # connection_id -> user_id (reverse index, kept in step with the above)
        self._connection_to_user: Dict[str, str] = {}

        # user_id -> when their last live entry was removed
        self._last_seen: Dict[str, datetime] = {}

        self._lock = asyncio.Lock()

    # =========================================================================
    # Mutations
    # =========================================================================

    async def register(self, connection: Connection) -> Optional[Connection]:
        """Install *connection* as the live session of its user.

        If the user already has a different live connection, that connection
        receives ``session-superseded`` and is closed before the new entry is
        installed.

        Returns:
            The displaced connection, if one was replaced.
        """
        user_id = connection.user_id
        displaced = None

        async with self._lock:
            previous_id = self._user_to_connection.get(user_id)
            if previous_id is not None and previous_id != connection.id:
                displaced = self._remove(previous_id)
                if displaced is not None:
                    logger.info(
                        f"[Presence] User {user_id} opened a new session; "
                        f"superseding connection {displaced.id}"
                    )
                    await displaced.send({"type": EventType.SESSION_SUPERSEDED.value})
                    await displaced.close(code=SESSION_SUPERSEDED_CLOSE_CODE)

            self._connections[connection.id] = connection
            self._user_to_connection[user_id] = connection.id
            self._connection_to_user[connection.id] = user_id

        logger.info(
            f"[Presence] User {user_id} online on connection {connection.id}. "
            f"{len(self._user_to_connection)} users online"
        )
        await self.broadcast_presence()
        return displaced

    async def unregister(self, connection_id: str) -> bool:
        """Remove the entry for *connection_id* if it is still the live one.

        A connection that was already superseded is ignored, so a late
        disconnect can never evict the session that replaced it.

        Returns:
            True if an entry was removed.
        """
        async with self._lock:
            user_id = self._connection_to_user.get(connection_id)
            if user_id is None or self._user_to_connection.get(user_id) != connection_id:
                logger.debug(f"[Presence] Ignoring unregister of stale connection {connection_id}")
                return False
            self._remove(connection_id)
            self._last_seen[user_id] = datetime.now(timezone.utc)

        logger.info(f"[Presence] User {user_id} offline ({len(self._user_to_connection)} users online)")
        await self.broadcast_presence()
        return True

    def _remove(self, connection_id: str) -> Optional[Connection]:
        """Drop both directions of an entry. Caller holds the lock."""
        connection = self._connections.pop(connection_id, None)
        user_id = self._connection_to_user.pop(connection_id, None)
        if user_id is not None and self._user_to_connection.get(user_id) == connection_id:
            del self._user_to_connection[user_id]
        return connection

    # =========================================================================
    # Lookups
    # =========================================================================

    def resolve(self, user_id: str) -> Optional[str]:
        """Return the live connection ID for *user_id*, or None if offline."""
        return self._user_to_connection.get(user_id)

    def is_current(self, connection_id: str) -> bool:
        """Check whether *connection_id* is the live session of its user."""
        user_id = self._connection_to_user.get(connection_id)
        return user_id is not None and self._user_to_connection.get(user_id) == connection_id

    def user_for(self, connection_id: str) -> Optional[str]:
        """Return the user bound to *connection_id*, if it is registered."""
        return self._connection_to_user.get(connection_id)

    def snapshot(self) -> Set[str]:
        """Return the set of user IDs that are currently online."""
        return set(self._user_to_connection)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._user_to_connection

    def last_seen(self, user_id: str) -> Optional[datetime]:
        """When *user_id* last went offline (None if never seen offline)."""
        return self._last_seen.get(user_id)

    # =========================================================================
    # Delivery
    # =========================================================================

    async def send(self, connection_id: str, event: Dict[str, Any]) -> bool:
        """Send *event* to a registered connection.

        Returns:
            True if the connection exists and accepted the event.
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        return await connection.send(event)

    async def relay(self, user_id: str, event: Dict[str, Any]) -> bool:
        """Send *event* to whichever connection *user_id* is currently on.

        Returns:
            True if the user was reachable and the send succeeded.
        """
        connection_id = self.resolve(user_id)
        if connection_id is None:
            return False
        return await self.send(connection_id, event)

    async def broadcast_presence(self) -> None:
        """Send the online-user snapshot to every live connection concurrently."""
        event = {
            "type": EventType.PRESENCE_CHANGED.value,
            "userIds": sorted(self._user_to_connection),
        }
        connections: List[Connection] = list(self._connections.values())
        if not connections:
            return
        await asyncio.gather(
            *[conn.send(event) for conn in connections],
            return_exceptions=True,
        )

    def __len__(self) -> int:
        return len(self._user_to_connection)
