"""Message history REST API router.

Endpoints:
    GET /messages/{peer_id} - Paginated conversation with a peer
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from friendstalk.auth import require_user
from friendstalk.config import get_config
from friendstalk.errors import InvalidArgument, PersistenceError
from friendstalk.realtime.lifecycle import get_lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


@router.get("/messages/{peer_id}")
async def get_conversation(
    peer_id: str,
    before: Optional[datetime] = Query(None, description="Cursor: only messages created before this time"),
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
    before_id: Optional[str] = Query(
        None, alias="beforeId", description="Cursor tie-breaker: id of the message at \"before\""
    ),
    user_id: str = Depends(require_user),
) -> JSONResponse:
    """Get one page of the conversation between the caller and *peer_id*.

    Clients page backwards by passing the ``createdAt`` and ``id`` of the
    oldest message they already have as ``before`` and ``beforeId``.
    Messages that share a timestamp are ordered by ID, so the pair is an
    exact cursor. ``before`` alone keeps only strictly older messages.

    Returns:
        JSON with a ``messages`` array (oldest first) and ``hasMore``.

    Example:
        GET /messages/bob?limit=50
        GET /messages/bob?before=2026-01-01T10:00:00Z&beforeId=3f2a...&limit=50
    """
    store_cfg = get_config().store
    page_size = min(limit or store_cfg.history_limit, store_cfg.max_history_limit)
    pipeline = get_lifecycle().messages
    if before is not None and before.tzinfo is None:
        before = before.replace(tzinfo=timezone.utc)

    try:
        messages = await pipeline.history(
            user_id, peer_id, before=before, limit=page_size, before_id=before_id
        )
        has_more = False
        if messages:
            oldest = messages[0]
            older = await pipeline.history(
                user_id, peer_id, before=oldest.createdAt, limit=1, before_id=oldest.id
            )
            has_more = len(older) > 0
    except InvalidArgument:
        raise HTTPException(status_code=400, detail="Invalid contact id")
    except PersistenceError as exc:
        logger.error(f"[Messages] History fetch failed for {user_id}/{peer_id}: {exc}")
        raise HTTPException(status_code=500, detail="Failed to fetch messages")

    return JSONResponse({
        "messages": [msg.model_dump(mode="json") for msg in messages],
        "hasMore": has_more,
    })
