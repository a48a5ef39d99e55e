"""Call signaling coordinator.

Brokers WebRTC setup between two users: relays the SDP offer and answer and
the ICE candidates, and tracks each call in a CallSession. The coordinator
enforces that a user takes part in at most one live session at a time.

The coordinator starts no timers. A ring that nobody answers ends only when
one side ends it or disconnects; such sessions are reported with
``missed: true`` so clients can show a missed call.

Thread Safety:
    Designed for a single asyncio event loop. Every state change happens
    before the first ``await`` of an operation, so the session maps are
    always consistent when another event is processed. Relays are awaited
    afterwards, in the order events arrived on the connection.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from friendstalk.events import EventType
from friendstalk.identity import is_valid_user_id
from friendstalk.presence import PresenceRegistry

from .schemas import (
    CallKind,
    CallOutcome,
    CallSession,
    CallState,
    EndReason,
    RejectReason,
)

logger = logging.getLogger(__name__)


@dataclass
class InviteResult:
    """Outcome of an invite; ``call_id`` is set whenever a session was opened."""
    outcome: CallOutcome
    call_id: Optional[str] = None


class CallCoordinator:
    """Owns every live CallSession and relays signaling between participants."""

    def __init__(self, presence: PresenceRegistry) -> None:
        self.presence = presence

        # call_id -> CallSession
        self._sessions: Dict[str, CallSession] = {}

        # user_id -> call_id (one live session per user)
        self._user_calls: Dict[str, str] = {}

    # =========================================================================
    # Lookups
    # =========================================================================

    def session_for(self, user_id: str) -> Optional[CallSession]:
        """Return the live session *user_id* takes part in, if any."""
        call_id = self._user_calls.get(user_id)
        return self._sessions.get(call_id) if call_id else None

    def get(self, call_id: str) -> Optional[CallSession]:
        return self._sessions.get(call_id)

    def is_busy(self, user_id: str) -> bool:
        return user_id in self._user_calls

    def active_sessions(self) -> List[CallSession]:
        return list(self._sessions.values())

    # =========================================================================
    # Session bookkeeping
    # =========================================================================

    def _open(self, session: CallSession) -> None:
        self._sessions[session.callId] = session
        self._user_calls[session.callerId] = session.callId
        self._user_calls[session.calleeId] = session.callId

    def _close(self, session: CallSession, state: CallState) -> None:
        """Move *session* to a terminal state and forget it."""
        session.state = state
        self._sessions.pop(session.callId, None)
        for user_id in (session.callerId, session.calleeId):
            if self._user_calls.get(user_id) == session.callId:
                del self._user_calls[user_id]
        logger.info(
            f"[Calls] Call {session.callId} ({session.callerId} → {session.calleeId}) {state.value}"
        )

    # =========================================================================
    # Signaling
    # =========================================================================

    async def invite(
        self,
        caller_id: str,
        callee_id: str,
        offer: Any,
        kind: CallKind = CallKind.AUDIO,
        call_id: Optional[str] = None,
    ) -> InviteResult:
        """Open a ringing session and relay the offer to the callee.

        The invite is refused with ``call-rejected`` to the caller when
        either party is already in a call (``busy``) or the callee has no
        live connection (``offline``). No session is created in those cases.
        """
        if not is_valid_user_id(callee_id) or callee_id == caller_id or not offer:
            logger.info(f"[Calls] Ignoring invalid invite from {caller_id} to {callee_id!r}")
            return InviteResult(CallOutcome.INVALID)

        if call_id is None or call_id in self._sessions:
            session = CallSession(callerId=caller_id, calleeId=callee_id, kind=kind)
        else:
            session = CallSession(callId=call_id, callerId=caller_id, calleeId=callee_id, kind=kind)

        if self.is_busy(callee_id) or self.is_busy(caller_id):
            logger.info(f"[Calls] Invite {caller_id} → {callee_id} refused: busy")
            await self._reject_to_caller(session, RejectReason.BUSY)
            return InviteResult(CallOutcome.BUSY)

        if self.presence.resolve(callee_id) is None:
            logger.info(f"[Calls] Invite {caller_id} → {callee_id} refused: callee offline")
            await self._reject_to_caller(session, RejectReason.OFFLINE)
            return InviteResult(CallOutcome.OFFLINE)

        self._open(session)
        relayed = await self.presence.relay(callee_id, {
            "type": EventType.CALL_INCOMING.value,
            "callId": session.callId,
            "callerId": caller_id,
            "offer": offer,
            "kind": session.kind.value,
        })
        if not relayed:
            # Callee dropped between resolve and send.
            if self._sessions.get(session.callId) is session:
                self._close(session, CallState.FAILED)
            await self._reject_to_caller(session, RejectReason.OFFLINE)
            return InviteResult(CallOutcome.OFFLINE)

        logger.info(f"[Calls] Call {session.callId} ringing: {caller_id} → {callee_id} ({session.kind.value})")
        return InviteResult(CallOutcome.RINGING, session.callId)

    async def _reject_to_caller(self, session: CallSession, reason: RejectReason) -> None:
        await self.presence.relay(session.callerId, {
            "type": EventType.CALL_REJECTED.value,
            "callId": session.callId,
            "reason": reason.value,
            "fromId": session.calleeId,
        })

    async def answer(self, callee_id: str, call_id: str, answer: Any) -> CallOutcome:
        """Accept a ringing call and relay the SDP answer to the caller.

        Answers for unknown, already-answered or ended calls are dropped.
        """
        session = self._sessions.get(call_id)
        if (session is None or session.calleeId != callee_id
                or session.state != CallState.RINGING or not answer):
            logger.debug(f"[Calls] Stale answer from {callee_id} for call {call_id}")
            return CallOutcome.STALE

        session.state = CallState.CONNECTED
        session.answeredAt = datetime.now(timezone.utc)
        logger.info(f"[Calls] Call {call_id} connected")

        await self.presence.relay(session.callerId, {
            "type": EventType.CALL_ANSWERED.value,
            "callId": call_id,
            "answer": answer,
            "fromId": callee_id,
        })
        return CallOutcome.CONNECTED

    async def candidate(self, from_id: str, call_id: str, candidate: Any) -> CallOutcome:
        """Relay an ICE candidate to the other participant, in any live state.

        Candidates for unknown sessions are expected after a call ends and
        are dropped silently.
        """
        session = self._sessions.get(call_id)
        if session is None or not session.involves(from_id) or not candidate:
            logger.debug(f"[Calls] Dropping ICE candidate from {from_id} for call {call_id}")
            return CallOutcome.STALE

        await self.presence.relay(session.peer_of(from_id), {
            "type": EventType.ICE_CANDIDATE.value,
            "callId": call_id,
            "candidate": candidate,
            "fromId": from_id,
        })
        return CallOutcome.RELAYED

    async def reject(
        self,
        callee_id: str,
        call_id: str,
        reason: RejectReason = RejectReason.REJECTED,
    ) -> CallOutcome:
        """Decline a ringing call and tell the caller why."""
        session = self._sessions.get(call_id)
        if session is None or session.calleeId != callee_id or session.state != CallState.RINGING:
            logger.debug(f"[Calls] Stale reject from {callee_id} for call {call_id}")
            return CallOutcome.STALE

        if reason not in (RejectReason.REJECTED, RejectReason.BUSY):
            reason = RejectReason.REJECTED

        self._close(session, CallState.REJECTED)
        await self._reject_to_caller(session, reason)
        return CallOutcome.REJECTED

    async def end(
        self,
        user_id: str,
        call_id: Optional[str] = None,
        peer_id: Optional[str] = None,
    ) -> CallOutcome:
        """Hang up.

        Ends the user's live session and notifies the other participant.
        The session matches when *call_id* is its ID, when no *call_id* is
        given, or when *peer_id* is the other participant. Without a
        matching session the end is relayed straight to *peer_id*, which
        covers calls the local side never saw progress past signaling; that
        path is a no-op when the peer is unknown or offline.
        """
        session = self.session_for(user_id)
        if session is not None and (
            call_id is None
            or session.callId == call_id
            or peer_id == session.peer_of(user_id)
        ):
            await self._terminate(session, user_id, EndReason.ENDED)
            return CallOutcome.ENDED

        if peer_id is None or not is_valid_user_id(peer_id) or peer_id == user_id:
            logger.debug(f"[Calls] End from {user_id} matched no call")
            return CallOutcome.STALE

        relayed = await self.presence.relay(peer_id, {
            "type": EventType.CALL_ENDED.value,
            "callId": call_id,
            "reason": EndReason.ENDED.value,
            "fromId": user_id,
            "kind": None,
            "missed": False,
        })
        return CallOutcome.RELAYED if relayed else CallOutcome.STALE

    async def disconnect(self, user_id: str) -> Optional[CallSession]:
        """End whatever call *user_id* is in because their connection went away.

        Unconditional: a session never outlives either participant's
        connection.

        Returns:
            The session that was ended, if there was one.
        """
        session = self.session_for(user_id)
        if session is None:
            return None
        await self._terminate(session, user_id, EndReason.PEER_DISCONNECTED)
        return session

    async def _terminate(self, session: CallSession, by_user_id: str, reason: EndReason) -> None:
        missed = session.state == CallState.RINGING
        self._close(session, CallState.MISSED if missed else CallState.ENDED)
        await self.presence.relay(session.peer_of(by_user_id), {
            "type": EventType.CALL_ENDED.value,
            "callId": session.callId,
            "reason": reason.value,
            "fromId": by_user_id,
            "kind": session.kind.value,
            "missed": missed,
        })
