"""Realtime event names exchanged over the ``/ws`` endpoint.

Every frame is a JSON object whose ``type`` field holds one of these names.
"""
from enum import Enum


class EventType(str, Enum):
    """Names of inbound (client → server) and outbound (server → client) events."""
    # Inbound
    SEND_MESSAGE = "send-message"
    MARK_READ = "mark-read"
    CALL_INVITE = "call-invite"
    CALL_ANSWER = "call-answer"
    CALL_REJECT = "call-reject"
    CALL_END = "call-end"
    TYPING = "typing"
    STOP_TYPING = "stop-typing"

    # Both directions
    ICE_CANDIDATE = "ice-candidate"

    # Outbound
    PRESENCE_CHANGED = "presence-changed"
    MESSAGE_RECEIVED = "message-received"
    MESSAGE_STATUS = "message-status"
    MESSAGES_READ = "messages-read"
    CALL_INCOMING = "call-incoming"
    CALL_ANSWERED = "call-answered"
    CALL_REJECTED = "call-rejected"
    CALL_ENDED = "call-ended"
    SESSION_SUPERSEDED = "session-superseded"
    ERROR = "error"
