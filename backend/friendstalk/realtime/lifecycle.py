"""Connection lifecycle manager.

Entry point for every realtime event. It registers connections with the
presence registry, tears them down in the right order, and routes each
typed command to the component that owns it:

    connect     → PresenceRegistry.register (+ call cleanup if a session was displaced)
    disconnect  → CallCoordinator.disconnect, then PresenceRegistry.unregister
    send-message, mark-read             → MessagePipeline
    call-*, ice-candidate               → CallCoordinator
    typing, stop-typing                 → relayed directly, never stored

Events arriving on a connection that has been superseded or closed are
stale and dropped.
"""
import logging
from typing import Awaitable, Callable, Dict, Optional

from pydantic import BaseModel

from friendstalk.calls import CallCoordinator, CallOutcome
from friendstalk.config import AppSettings, get_config
from friendstalk.events import EventType
from friendstalk.identity import is_valid_user_id
from friendstalk.messages import MessagePipeline, MessageStore, build_message_store
from friendstalk.presence import Connection, PresenceRegistry

from .protocol import (
    CallAnswerCommand,
    CallEndCommand,
    CallInviteCommand,
    CallRejectCommand,
    IceCandidateCommand,
    MarkReadCommand,
    SendMessageCommand,
    TypingCommand,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, BaseModel], Awaitable[None]]


class ConnectionLifecycleManager:
    """Wires the presence registry, message pipeline and call coordinator."""

    def __init__(
        self,
        presence: PresenceRegistry,
        messages: MessagePipeline,
        calls: CallCoordinator,
    ) -> None:
        self.presence = presence
        self.messages = messages
        self.calls = calls
        self._handlers: Dict[EventType, Handler] = {
            EventType.SEND_MESSAGE: self._on_send_message,
            EventType.MARK_READ: self._on_mark_read,
            EventType.CALL_INVITE: self._on_call_invite,
            EventType.CALL_ANSWER: self._on_call_answer,
            EventType.CALL_REJECT: self._on_call_reject,
            EventType.CALL_END: self._on_call_end,
            EventType.ICE_CANDIDATE: self._on_ice_candidate,
            EventType.TYPING: self._on_typing,
            EventType.STOP_TYPING: self._on_typing,
        }

    @classmethod
    def create(
        cls,
        store: Optional[MessageStore] = None,
        settings: Optional[AppSettings] = None,
    ) -> "ConnectionLifecycleManager":
        """Build a manager with fresh components.

        Args:
            store: Message store to use; defaults to the configured backend.
            settings: Settings to read limits from; defaults to get_config().
        """
        settings = settings or get_config()
        presence = PresenceRegistry()
        messages = MessagePipeline(
            presence,
            store if store is not None else build_message_store(settings.store),
            read_batch_limit=settings.store.read_batch_limit,
        )
        return cls(presence, messages, CallCoordinator(presence))

    # =========================================================================
    # Connect / disconnect
    # =========================================================================

    async def connect(self, connection: Connection) -> None:
        """Register an authenticated connection.

        A displaced older session of the same user takes its call down with
        it, since the call's media was bound to that session.
        """
        displaced = await self.presence.register(connection)
        if displaced is not None:
            await self.calls.disconnect(connection.user_id)

    async def disconnect(self, connection: Connection) -> None:
        """Clean up after a closed connection.

        Call cleanup runs first, while the presence entry still exists; a
        connection that was already superseded has nothing left to clean.
        """
        if not self.presence.is_current(connection.id):
            logger.debug(f"[WS] Disconnect of superseded connection {connection.id}")
            return
        ended = await self.calls.disconnect(connection.user_id)
        if ended is not None:
            logger.info(f"[WS] Ended call {ended.callId} after {connection.user_id} disconnected")
        await self.presence.unregister(connection.id)

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, connection: Connection, command: BaseModel) -> None:
        """Route a parsed command to its handler by its event type."""
        if connection.closed or not self.presence.is_current(connection.id):
            logger.debug(f"[WS] Dropping {type(command).__name__} from stale connection {connection.id}")
            return
        handler = self._handlers.get(EventType(command.type))
        if handler is None:
            logger.warning(f"[WS] No handler for {command.type}")
            return
        await handler(connection, command)

    async def _send_error(self, connection: Connection, error: str) -> None:
        await connection.send({"type": EventType.ERROR.value, "error": error})

    # --- Messages ---

    async def _on_send_message(self, connection: Connection, command: SendMessageCommand) -> None:
        result = await self.messages.send(
            connection.user_id,
            command.receiverId,
            command.content,
            kind=command.kind,
            media=command.media,
            client_supplied_id=command.clientSuppliedId,
            reply_to=connection.id,
        )
        if result.status == "invalid":
            await self._send_error(connection, result.error or "Invalid message")

    async def _on_mark_read(self, connection: Connection, command: MarkReadCommand) -> None:
        await self.messages.mark_read(connection.user_id, command.peerId)

    # --- Calls ---

    async def _on_call_invite(self, connection: Connection, command: CallInviteCommand) -> None:
        result = await self.calls.invite(
            connection.user_id,
            command.calleeId,
            command.offer,
            kind=command.kind,
            call_id=command.callId,
        )
        if result.outcome == CallOutcome.INVALID:
            await self._send_error(connection, "Invalid call invite")

    async def _on_call_answer(self, connection: Connection, command: CallAnswerCommand) -> None:
        await self.calls.answer(connection.user_id, command.callId, command.answer)

    async def _on_call_reject(self, connection: Connection, command: CallRejectCommand) -> None:
        await self.calls.reject(connection.user_id, command.callId, command.reason)

    async def _on_call_end(self, connection: Connection, command: CallEndCommand) -> None:
        await self.calls.end(connection.user_id, command.callId, command.peerId)

    async def _on_ice_candidate(self, connection: Connection, command: IceCandidateCommand) -> None:
        await self.calls.candidate(connection.user_id, command.callId, command.candidate)

    # --- Typing indicators ---

    async def _on_typing(self, connection: Connection, command: TypingCommand) -> None:
        if not is_valid_user_id(command.to) or command.to == connection.user_id:
            return
        await self.presence.relay(command.to, {
            "type": command.type,
            "fromId": connection.user_id,
        })

    async def close(self) -> None:
        """Release the message store."""
        await self.messages.store.close()


# Process-wide manager shared by the WebSocket and REST handlers
_lifecycle: Optional[ConnectionLifecycleManager] = None


def get_lifecycle() -> ConnectionLifecycleManager:
    """Return the process-wide manager, creating it from config on first use."""
    global _lifecycle
    if _lifecycle is None:
        _lifecycle = ConnectionLifecycleManager.create()
    return _lifecycle


def set_lifecycle(lifecycle: Optional[ConnectionLifecycleManager]) -> None:
    """Install (or clear, with None) the process-wide manager."""
    global _lifecycle
    _lifecycle = lifecycle
