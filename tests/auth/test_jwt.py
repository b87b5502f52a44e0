"""Tests for bearer token verification."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from devpath.auth.jwt import create_access_token, verify_token
from devpath.config import get_settings


def _encode(payload: dict, secret: str | None = None) -> str:
    return jwt.encode(payload, secret or get_settings().jwt_secret, algorithm="HS256")


class TestAccessToken:
    def test_create_and_verify(self):
        token = create_access_token("learner-1", "Ada")
        payload = verify_token(token)
        assert payload["sub"] == "learner-1"
        assert payload["name"] == "Ada"
        assert payload["type"] == "access"

    def test_token_without_type_claim_accepted(self):
        now = datetime.now(timezone.utc)
        token = _encode({"sub": "x", "exp": now + timedelta(minutes=5), "iss": get_settings().jwt_issuer})
        assert verify_token(token)["sub"] == "x"

    def test_wrong_type_rejected(self):
        now = datetime.now(timezone.utc)
        token = _encode({
            "sub": "x",
            "exp": now + timedelta(minutes=5),
            "iss": get_settings().jwt_issuer,
            "type": "refresh",
        })
        with pytest.raises(jwt.InvalidTokenError, match="Expected token type"):
            verify_token(token)


class TestRejections:
    def test_expired(self):
        token = create_access_token("learner-1", expires_minutes=-1)
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_token(token)

    def test_wrong_secret(self):
        now = datetime.now(timezone.utc)
        token = _encode(
            {"sub": "x", "exp": now + timedelta(minutes=5), "iss": get_settings().jwt_issuer},
            secret="not-the-secret",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_wrong_issuer(self):
        now = datetime.now(timezone.utc)
        token = _encode({"sub": "x", "exp": now + timedelta(minutes=5), "iss": "someone-else"})
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_missing_subject(self):
        now = datetime.now(timezone.utc)
        token = _encode({"exp": now + timedelta(minutes=5), "iss": get_settings().jwt_issuer})
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)
