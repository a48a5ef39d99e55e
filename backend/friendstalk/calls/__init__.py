"""WebRTC call signaling between two users."""

from .coordinator import CallCoordinator, InviteResult
from .schemas import (
    CallKind,
    CallOutcome,
    CallSession,
    CallState,
    EndReason,
    RejectReason,
)

__all__ = [
    "CallCoordinator",
    "CallKind",
    "CallOutcome",
    "CallSession",
    "CallState",
    "EndReason",
    "InviteResult",
    "RejectReason",
]
