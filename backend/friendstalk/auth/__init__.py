"""Identity token verification for the realtime and REST surfaces."""
from .dependencies import extract_bearer, require_user
from .service import TokenVerifier, get_token_verifier, issue_token

__all__ = [
    "TokenVerifier",
    "extract_bearer",
    "get_token_verifier",
    "issue_token",
    "require_user",
]
