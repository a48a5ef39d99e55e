"""One-to-one messages with delivery and read receipts."""

from .pipeline import MessagePipeline
from .schemas import (
    DeliveryStatus,
    MediaRef,
    Message,
    MessageKind,
    ReadReceipt,
    SendResult,
)
from .store import (
    DuckDBMessageStore,
    InMemoryMessageStore,
    MessageStore,
    build_message_store,
)

__all__ = [
    "DeliveryStatus",
    "DuckDBMessageStore",
    "InMemoryMessageStore",
    "MediaRef",
    "Message",
    "MessageKind",
    "MessagePipeline",
    "MessageStore",
    "ReadReceipt",
    "SendResult",
    "build_message_store",
]
