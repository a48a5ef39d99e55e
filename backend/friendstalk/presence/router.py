"""Presence REST API router.

Endpoints:
    GET /presence           - Online user IDs
    GET /presence/{user_id} - Online flag and last-seen time for one user
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from friendstalk.auth import require_user
from friendstalk.identity import is_valid_user_id
from friendstalk.realtime.lifecycle import get_lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(tags=["presence"])


@router.get("/presence")
async def list_online_users(user_id: str = Depends(require_user)) -> JSONResponse:
    """Return the IDs of every user with a live connection."""
    presence = get_lifecycle().presence
    return JSONResponse({"userIds": sorted(presence.snapshot())})


@router.get("/presence/{target_id}")
async def get_user_presence(target_id: str, user_id: str = Depends(require_user)) -> JSONResponse:
    """Return whether *target_id* is online and when they were last seen.

    ``lastSeenAt`` is null for users who have not gone offline since the
    server started.
    """
    if not is_valid_user_id(target_id):
        raise HTTPException(status_code=400, detail="Invalid user id")

    presence = get_lifecycle().presence
    last_seen = presence.last_seen(target_id)
    return JSONResponse({
        "userId": target_id,
        "online": presence.is_online(target_id),
        "lastSeenAt": last_seen.isoformat() if last_seen else None,
    })
