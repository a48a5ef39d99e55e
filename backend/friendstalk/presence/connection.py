"""A single live WebSocket session bound to an authenticated user."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Application close code sent to a connection replaced by a newer session
SESSION_SUPERSEDED_CLOSE_CODE = 4000


class Connection:
    """Wraps a transport (a FastAPI ``WebSocket``) with the relay's identity.

    The transport only needs ``send_json`` and ``close`` coroutines, which
    keeps the registry and coordinator testable without a server.

    Attributes:
        id: Server-generated connection handle.
        user_id: Identity resolved at handshake time; fixed for the session.
        established_at: When the handshake completed (UTC).
        closed: True once the server has closed this connection.
    """

    def __init__(self, transport: Any, user_id: str, connection_id: Optional[str] = None) -> None:
        self.id = connection_id or str(uuid.uuid4())
        self.user_id = user_id
        self.established_at = datetime.now(timezone.utc)
        self.closed = False
        self._transport = transport

    async def send(self, event: Dict[str, Any]) -> bool:
        """Send a JSON event, reporting failure instead of raising.

        Returns:
            True if the transport accepted the event, False otherwise.
        """
        if self.closed:
            return False
        try:
            await self._transport.send_json(event)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {self.id}: {e}")
            return False

    async def close(self, code: int = 1000) -> None:
        """Close the transport. Safe to call on an already-dead connection."""
        if self.closed:
            return
        self.closed = True
        try:
            await self._transport.close(code=code)
        except Exception as e:
            logger.debug(f"Close on connection {self.id} failed: {e}")

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id!r})"
