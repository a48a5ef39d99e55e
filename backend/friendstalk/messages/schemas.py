"""Pydantic schemas for one-to-one chat messages.

A Message is created once per send and afterwards only its two receipt
timestamps change, each at most once:

    deliveredAt: null → timestamp when the relay to the receiver succeeded
    readAt:      null → timestamp on an explicit read acknowledgement
                 (deliveredAt is backfilled if it was still null)
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageKind(str, Enum):
    """What a message carries.

    Attributes:
        TEXT: Plain text body.
        IMAGE: Image attachment referenced by ``media``.
        VIDEO: Video attachment.
        AUDIO: Voice note or other audio.
        FILE: Any other file.
    """
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


class DeliveryStatus(str, Enum):
    """Status reported back to the sender after a send.

    Attributes:
        SENT: Persisted, but the receiver was not reachable.
        DELIVERED: Persisted and relayed to the receiver's live connection.
    """
    SENT = "sent"
    DELIVERED = "delivered"


class MediaRef(BaseModel):
    """Reference to media uploaded to the blob store by another service."""
    url: str = Field(..., min_length=1, description="Public URL of the uploaded media")
    mime: Optional[str] = Field(default=None, description="MIME type")
    name: Optional[str] = Field(default=None, description="Original file name")
    size: Optional[int] = Field(default=None, ge=0, description="Size in bytes")


class Message(BaseModel):
    """A persisted chat message.

    Attributes:
        id: Server-generated message ID.
        senderId: User who sent the message.
        receiverId: User the message is addressed to.
        kind: Text or media kind.
        body: Trimmed text body (may be empty for media).
        media: Media reference for non-text kinds.
        createdAt: Creation time; orders a conversation.
        deliveredAt: Set once, when the live relay succeeded.
        readAt: Set once, when the receiver acknowledged reading.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Message ID")
    senderId: str = Field(..., description="Sender user ID")
    receiverId: str = Field(..., description="Receiver user ID")
    kind: MessageKind = Field(default=MessageKind.TEXT, description="Message kind")
    body: str = Field(default="", description="Text body")
    media: Optional[MediaRef] = Field(default=None, description="Attached media")
    createdAt: datetime = Field(default_factory=utcnow, description="Creation time (UTC)")
    deliveredAt: Optional[datetime] = Field(default=None, description="Delivery time (UTC)")
    readAt: Optional[datetime] = Field(default=None, description="Read time (UTC)")

    def to_event_payload(self) -> dict:
        """Fields relayed to the receiver in ``message-received``."""
        return {
            "messageId": self.id,
            "senderId": self.senderId,
            "receiverId": self.receiverId,
            "kind": self.kind.value,
            "content": self.body,
            "media": self.media.model_dump() if self.media else None,
            "createdAt": self.createdAt.isoformat(),
        }


@dataclass
class SendResult:
    """Outcome of ``MessagePipeline.send``.

    ``status`` is a DeliveryStatus value on success, ``"invalid"`` when the
    request was rejected before persistence, or ``"failed"`` when the store
    could not persist the message.
    """
    status: str
    message: Optional[Message] = None
    error: Optional[str] = None


@dataclass
class ReadReceipt:
    """Outcome of ``MessagePipeline.mark_read``; empty when nothing was unread."""
    reader_id: str
    peer_id: str
    message_ids: List[str] = field(default_factory=list)
    read_at: Optional[datetime] = None
    notified: bool = False
