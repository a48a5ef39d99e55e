"""FastAPI dependencies for authenticated REST endpoints."""
from typing import Optional

from fastapi import Header, HTTPException, status

from friendstalk.errors import AuthenticationError

from .service import get_token_verifier


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[len("Bearer "):].strip() or None


async def require_user(authorization: Optional[str] = Header(None)) -> str:
    """Resolve the calling user's ID or fail with 401."""
    try:
        return get_token_verifier().verify(extract_bearer(authorization))
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
