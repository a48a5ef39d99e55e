"""Call signaling state.

A CallSession is ephemeral relay state; it is never persisted. States:

    RINGING ──answer──▶ CONNECTED ──end/disconnect──▶ ENDED
       │
       ├──reject──────▶ REJECTED
       ├──end/disconnect while ringing──▶ MISSED
       └──invite relay failed──▶ FAILED

All states other than RINGING and CONNECTED are terminal; a session in a
terminal state is removed from the coordinator immediately.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CallKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class CallState(str, Enum):
    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"
    REJECTED = "rejected"
    MISSED = "missed"
    FAILED = "failed"


class RejectReason(str, Enum):
    """Reasons carried by ``call-rejected``.

    Attributes:
        REJECTED: The callee declined.
        BUSY: The callee (or caller) is already in a call.
        OFFLINE: The callee has no live connection.
    """
    REJECTED = "rejected"
    BUSY = "busy"
    OFFLINE = "offline"


class EndReason(str, Enum):
    """Reasons carried by ``call-ended``."""
    ENDED = "ended"
    PEER_DISCONNECTED = "peer-disconnected"


class CallOutcome(str, Enum):
    """Result of a coordinator operation, returned instead of raising."""
    RINGING = "ringing"
    CONNECTED = "connected"
    REJECTED = "rejected"
    BUSY = "busy"
    OFFLINE = "offline"
    ENDED = "ended"
    RELAYED = "relayed"
    STALE = "stale"
    INVALID = "invalid"


class CallSession(BaseModel):
    """A call negotiation between a caller and a callee.

    Attributes:
        callId: Session ID, chosen by the caller's client or generated.
        callerId: User who sent the invite.
        calleeId: User being called.
        kind: Audio or video.
        state: Current lifecycle state.
        createdAt: When the invite was accepted for relay.
        answeredAt: When the callee answered, if they did.
    """
    callId: str = Field(default_factory=lambda: str(uuid.uuid4()))
    callerId: str
    calleeId: str
    kind: CallKind = CallKind.AUDIO
    state: CallState = CallState.RINGING
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    answeredAt: Optional[datetime] = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.callerId, self.calleeId)

    def peer_of(self, user_id: str) -> str:
        """Return the other participant."""
        return self.calleeId if user_id == self.callerId else self.callerId
