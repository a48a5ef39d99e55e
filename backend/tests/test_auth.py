"""Tests for identity token verification."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from friendstalk.auth import TokenVerifier, extract_bearer, issue_token
from friendstalk.config import get_config
from friendstalk.errors import AuthenticationError


@pytest.fixture
def verifier():
    jwt_cfg = get_config().secrets.jwt
    return TokenVerifier(jwt_cfg.secret_key, jwt_cfg.algorithm)


def _sign(payload, secret=None):
    return jwt.encode(payload, secret or get_config().secrets.jwt.secret_key, algorithm="HS256")


class TestTokenVerifier:
    def test_issued_token_round_trips_to_user_id(self, verifier):
        assert verifier.verify(issue_token("alice")) == "alice"

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token(self, verifier, token):
        with pytest.raises(AuthenticationError, match="Missing"):
            verifier.verify(token)

    def test_expired_token(self, verifier):
        token = issue_token("alice", expires_delta=timedelta(minutes=-1))
        with pytest.raises(AuthenticationError, match="expired"):
            verifier.verify(token)

    def test_wrong_signature(self, verifier):
        token = _sign({"sub": "alice"}, secret="someone-elses-secret")
        with pytest.raises(AuthenticationError, match="Invalid"):
            verifier.verify(token)

    def test_garbage_token(self, verifier):
        with pytest.raises(AuthenticationError):
            verifier.verify("not.a.jwt")

    @pytest.mark.parametrize("payload", [{}, {"sub": "bad id with spaces"}, {"sub": ""}])
    def test_token_without_valid_subject(self, verifier, payload):
        payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=5)
        with pytest.raises(AuthenticationError, match="subject"):
            verifier.verify(_sign(payload))


class TestExtractBearer:
    @pytest.mark.parametrize(
        "header, expected",
        [
            ("Bearer abc.def", "abc.def"),
            ("Bearer   padded  ", "padded"),
            ("Bearer ", None),
            ("Basic dXNlcjpwYXNz", None),
            (None, None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer(header) == expected
