"""JWT identity verification.

Identity tokens are issued by the login service (OTP flow, outside this
process). The relay only needs to turn a token into a user ID, which it does
by validating the HS256 signature and the ``sub`` claim.

Usage:
    verifier = get_token_verifier()
    user_id = verifier.verify(token)   # raises AuthenticationError
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from friendstalk.config import get_config
from friendstalk.errors import AuthenticationError
from friendstalk.identity import is_valid_user_id

logger = logging.getLogger(__name__)


class TokenVerifier:
    """Decodes identity tokens into user IDs."""

    def __init__(self, secret_key: str, algorithm: str = "HS256") -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm

    def verify(self, token: Optional[str]) -> str:
        """Validate *token* and return the user ID it was issued for.

        Raises:
            AuthenticationError: If the token is missing, expired, badly
                signed, or does not carry a well-formed ``sub`` claim.
        """
        if not token:
            raise AuthenticationError("Missing identity token")

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as exc:
            logger.warning("[Auth] Identity token expired")
            raise AuthenticationError("Identity token expired") from exc
        except jwt.InvalidTokenError as exc:
            logger.warning("[Auth] Invalid identity token")
            raise AuthenticationError("Invalid identity token") from exc

        user_id = payload.get("sub")
        if not is_valid_user_id(user_id):
            raise AuthenticationError("Identity token has no valid subject")
        return user_id


def issue_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an identity token for *user_id* with the configured secret.

    The production login service issues its own tokens; this helper exists
    for local development and tests.
    """
    config = get_config()
    now = datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = timedelta(days=config.auth.token_expire_days)
    payload = {"sub": user_id, "iat": now, "exp": now + expires_delta}
    return jwt.encode(
        payload,
        config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
    )


def get_token_verifier() -> TokenVerifier:
    """Build a verifier from the current configuration."""
    jwt_cfg = get_config().secrets.jwt
    return TokenVerifier(jwt_cfg.secret_key, jwt_cfg.algorithm)
