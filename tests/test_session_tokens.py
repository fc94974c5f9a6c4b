"""
Tests for session JWT verification and admin login.
"""

from datetime import UTC, datetime, timedelta

import jwt
import pytest
from argon2 import PasswordHasher

from quota_bridge.exceptions import AuthenticationError
from quota_bridge.services.session_tokens import AdminAuthService, SessionTokenService

SECRET = "unit-test-secret-that-is-long-enough"


@pytest.fixture
def tokens() -> SessionTokenService:
    return SessionTokenService(SECRET, jwt_expire_hours=1)


@pytest.fixture
def admin_auth(tokens) -> AdminAuthService:
    return AdminAuthService(PasswordHasher().hash("correct horse"), tokens)


class TestSessionTokenService:
    def test_round_trip_keeps_claims(self, tokens):
        payload = tokens.verify_token(tokens.create_token("10086", name="Alice"))

        assert payload is not None
        assert payload["sub"] == "10086"
        assert payload["name"] == "Alice"

    def test_wrong_secret(self, tokens):
        other = SessionTokenService("a-different-secret-of-enough-length")
        assert other.verify_token(tokens.create_token("10086")) is None

    def test_expired(self, tokens):
        token = jwt.encode(
            {"sub": "10086", "exp": datetime.now(UTC) - timedelta(minutes=1)},
            SECRET,
            algorithm="HS256",
        )
        assert tokens.verify_token(token) is None

    def test_missing_subject(self, tokens):
        token = jwt.encode(
            {"exp": datetime.now(UTC) + timedelta(minutes=5)}, SECRET, algorithm="HS256"
        )
        assert tokens.verify_token(token) is None

    def test_unconfigured_secret_rejects_everything(self, tokens):
        assert SessionTokenService("").verify_token(tokens.create_token("10086")) is None

    def test_garbage(self, tokens):
        assert tokens.verify_token("not-a-jwt") is None


class TestAdminAuthService:
    def test_login_issues_admin_token(self, admin_auth):
        token = admin_auth.login("correct horse")

        assert admin_auth.verify(token)
        assert admin_auth.expires_in_seconds == 3600

    def test_wrong_password(self, admin_auth):
        with pytest.raises(AuthenticationError, match="invalid password"):
            admin_auth.login("battery staple")

    def test_user_token_is_not_admin(self, admin_auth, tokens):
        assert not admin_auth.verify(tokens.create_token("10086"))

    def test_not_configured(self, tokens):
        with pytest.raises(AuthenticationError, match="not configured"):
            AdminAuthService("", tokens).login("anything")

    def test_malformed_hash(self, tokens):
        with pytest.raises(AuthenticationError, match="not configured"):
            AdminAuthService("plaintext", tokens).login("plaintext")
