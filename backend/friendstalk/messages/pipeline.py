"""Message delivery pipeline.

Send flow (order matters; nothing is relayed before the durable write):

    validate → persist → resolve receiver → relay → mark delivered → ack sender

Read flow:

    find unread (peer → reader) → mark read atomically → notify peer if online

Relay failures are not errors: a receiver who is offline, or who drops
between resolve and send, simply leaves the message in the "sent" state.
Only store outages abort a send, and they are reported to the sender as a
failed acknowledgement rather than raised.
"""
import logging
from datetime import datetime
from typing import List, Optional

from friendstalk.errors import InvalidArgument, PersistenceError
from friendstalk.events import EventType
from friendstalk.identity import require_user_id
from friendstalk.presence import PresenceRegistry

from .schemas import (
    DeliveryStatus,
    MediaRef,
    Message,
    MessageKind,
    ReadReceipt,
    SendResult,
    utcnow,
)
from .store import MessageStore

logger = logging.getLogger(__name__)

# Upper bound on messages marked read by a single mark-read event
DEFAULT_READ_BATCH_LIMIT = 500


class MessagePipeline:
    """Persists, relays, and acknowledges one-to-one messages."""

    def __init__(
        self,
        presence: PresenceRegistry,
        store: MessageStore,
        read_batch_limit: int = DEFAULT_READ_BATCH_LIMIT,
    ) -> None:
        self.presence = presence
        self.store = store
        self.read_batch_limit = read_batch_limit

    # =========================================================================
    # Send
    # =========================================================================

    async def send(
        self,
        sender_id: str,
        receiver_id: str,
        content: str = "",
        *,
        kind: MessageKind = MessageKind.TEXT,
        media: Optional[MediaRef] = None,
        client_supplied_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> SendResult:
        """Persist a message, relay it if the receiver is online, ack the sender.

        Exactly one Message is created per call; ``client_supplied_id`` is
        echoed back for reconciliation and never used to deduplicate.

        Args:
            sender_id: Authenticated sender.
            receiver_id: Addressee; must be a well-formed user ID.
            content: Text body (trimmed; required for text messages).
            kind: Message kind; non-text kinds require ``media``.
            media: Uploaded media reference.
            client_supplied_id: Sender-chosen token echoed in the status event.
            reply_to: Connection that should receive the acknowledgement.
                Defaults to the sender's current connection.

        Returns:
            SendResult describing what happened.
        """
        try:
            body = self._validate(sender_id, receiver_id, content, kind, media)
        except InvalidArgument as exc:
            logger.info(f"[Messages] Rejected send from {sender_id}: {exc}")
            return SendResult(status="invalid", error=str(exc))

        message = Message(
            senderId=sender_id,
            receiverId=receiver_id,
            kind=kind,
            body=body,
            media=media,
        )

        try:
            message = await self.store.create(message)
        except PersistenceError as exc:
            logger.error(f"[Messages] Failed to persist message from {sender_id} to {receiver_id}: {exc}")
            await self._ack(sender_id, reply_to, {
                "type": EventType.ERROR.value,
                "error": "Message could not be stored, please retry",
                "clientSuppliedId": client_supplied_id,
            })
            return SendResult(status="failed", error=str(exc))

        delivered = await self.presence.relay(receiver_id, {
            "type": EventType.MESSAGE_RECEIVED.value,
            **message.to_event_payload(),
        })

        if delivered:
            delivered_at = utcnow()
            message.deliveredAt = delivered_at
            try:
                await self.store.mark_delivered(message.id, delivered_at)
            except PersistenceError as exc:
                # The receiver already has the payload; the receipt is only late.
                logger.warning(f"[Messages] Could not record delivery of {message.id}: {exc}")

        status = DeliveryStatus.DELIVERED if delivered else DeliveryStatus.SENT
        logger.debug(f"[Messages] {message.id} from {sender_id} to {receiver_id}: {status.value}")

        await self._ack(sender_id, reply_to, {
            "type": EventType.MESSAGE_STATUS.value,
            "clientSuppliedId": client_supplied_id,
            "messageId": message.id,
            "status": status.value,
            "deliveredAt": message.deliveredAt.isoformat() if message.deliveredAt else None,
        })
        return SendResult(status=status.value, message=message)

    def _validate(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        kind: MessageKind,
        media: Optional[MediaRef],
    ) -> str:
        """Check a send request and return the trimmed body."""
        require_user_id(sender_id, "senderId")
        require_user_id(receiver_id, "receiverId")
        body = (content or "").strip()
        if kind == MessageKind.TEXT:
            if not body:
                raise InvalidArgument("Message content is required")
        elif media is None:
            raise InvalidArgument(f"A media reference is required for {kind.value} messages")
        return body

    async def _ack(self, sender_id: str, reply_to: Optional[str], event: dict) -> None:
        if reply_to is not None:
            await self.presence.send(reply_to, event)
        else:
            await self.presence.relay(sender_id, event)

    # =========================================================================
    # Read receipts
    # =========================================================================

    async def mark_read(self, reader_id: str, peer_id: str) -> ReadReceipt:
        """Mark everything *peer_id* sent to *reader_id* as read.

        Idempotent: when nothing is unread, no store write happens and no
        event is emitted. If the peer is offline the notification is dropped;
        the stored timestamps are the durable record.
        """
        receipt = ReadReceipt(reader_id=reader_id, peer_id=peer_id)
        try:
            require_user_id(peer_id, "peerId")
        except InvalidArgument as exc:
            logger.info(f"[Messages] Rejected mark-read from {reader_id}: {exc}")
            return receipt

        read_at = utcnow()
        try:
            message_ids = await self.store.mark_read(
                sender_id=peer_id,
                receiver_id=reader_id,
                read_at=read_at,
                limit=self.read_batch_limit,
            )
        except PersistenceError as exc:
            logger.error(f"[Messages] mark-read by {reader_id} for {peer_id} failed: {exc}")
            return receipt

        if not message_ids:
            return receipt

        receipt.message_ids = message_ids
        receipt.read_at = read_at
        receipt.notified = await self.presence.relay(peer_id, {
            "type": EventType.MESSAGES_READ.value,
            "readerId": reader_id,
            "messageIds": message_ids,
            "readAt": read_at.isoformat(),
        })
        logger.debug(
            f"[Messages] {reader_id} read {len(message_ids)} messages from {peer_id} "
            f"(notified={receipt.notified})"
        )
        return receipt

    # =========================================================================
    # History
    # =========================================================================

    async def history(
        self,
        user_id: str,
        peer_id: str,
        before: Optional[datetime] = None,
        limit: int = 50,
        before_id: Optional[str] = None,
    ) -> List[Message]:
        """Return one page of the conversation between two users, oldest first.

        The next older page starts at ``(before, before_id)`` taken from the
        first message of the current page.

        Raises:
            InvalidArgument: If *peer_id* is malformed.
            PersistenceError: If the store is unavailable.
        """
        require_user_id(peer_id, "peerId")
        return await self.store.conversation(
            user_id, peer_id, before=before, limit=limit, before_id=before_id
        )
