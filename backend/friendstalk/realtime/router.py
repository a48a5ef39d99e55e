"""Realtime WebSocket endpoint.

WebSocket /ws carries every realtime event as a JSON object with a ``type``
field (see ``friendstalk.events.EventType``).

Protocol Flow:
    1. Client connects with an identity token (``?token=`` or
       ``Authorization: Bearer``). Invalid tokens are closed with 1008.
    2. Server registers the session; every client receives
       {type: "presence-changed", userIds: [...]}.
       An older session of the same user receives
       {type: "session-superseded"} and is closed with code 4000.
    3. Client sends commands (send-message, mark-read, call-*, ...);
       malformed frames are answered with {type: "error", error: "..."}.
    4. On disconnect, any call the user was in ends with
       {type: "call-ended", reason: "peer-disconnected"} to the peer, and
       presence is rebroadcast.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from friendstalk.auth import extract_bearer, get_token_verifier
from friendstalk.errors import AuthenticationError
from friendstalk.events import EventType
from friendstalk.presence import Connection

from .lifecycle import get_lifecycle
from .protocol import describe_error, parse_command

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def realtime_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Identity token"),
) -> None:
    """WebSocket endpoint for presence, messaging and call signaling.

    Args:
        websocket: The WebSocket connection.
        token: Identity token, if not sent as a bearer header.
    """
    raw_token = token or extract_bearer(websocket.headers.get("authorization"))
    try:
        user_id = get_token_verifier().verify(raw_token)
    except AuthenticationError as exc:
        logger.warning(f"[WS] Rejecting connection: {exc}")
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    await websocket.accept()
    lifecycle = get_lifecycle()
    connection = Connection(websocket, user_id)
    logger.info(f"[WS] Connection {connection.id} accepted for user {user_id}")

    try:
        await lifecycle.connect(connection)

        # Main event loop; a superseded connection stops reading once closed
        while not connection.closed:
            raw = await websocket.receive_text()
            try:
                command = parse_command(raw)
            except ValidationError as exc:
                await connection.send({
                    "type": EventType.ERROR.value,
                    "error": describe_error(exc),
                })
                continue

            logger.debug("[WS] %s received: type=%s", user_id, command.type)
            await lifecycle.dispatch(connection, command)

    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {connection.id} for user {user_id} disconnected")
    finally:
        await lifecycle.disconnect(connection)
