"""
Session Tokens - JWT verification for users and JWT issuance for admins.

User session tokens are minted by the external login flow with
SESSION_JWT_SECRET; this service only verifies them. Admin tokens are
issued here after an argon2 password check.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from structlog import get_logger

from quota_bridge.exceptions import AuthenticationError

logger = get_logger(__name__)

ADMIN_SUBJECT = "admin"
ADMIN_ROLE = "admin"


class SessionTokenService:
    """HS256 JWT helpers."""

    def __init__(self, jwt_secret: str, jwt_expire_hours: int = 24) -> None:
        self.jwt_secret = jwt_secret
        self.jwt_expire_hours = jwt_expire_hours

    def create_token(self, subject: str, **claims: Any) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": subject,
            "iat": now,
            "exp": now + timedelta(hours=self.jwt_expire_hours),
            **claims,
        }
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify JWT token and return payload, or None if invalid or expired."""
        if not self.jwt_secret:
            logger.warning("jwt_secret_not_configured")
            return None
        try:
            payload: dict[str, Any] = jwt.decode(
                token, self.jwt_secret, algorithms=["HS256"], options={"require": ["sub", "exp"]}
            )
            return payload
        except jwt.ExpiredSignatureError:
            logger.warning("jwt_token_expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning("jwt_token_invalid", error=str(e))
            return None


class AdminAuthService:
    """Password login for the single operator account."""

    def __init__(self, password_hash: str, tokens: SessionTokenService) -> None:
        self.password_hash = password_hash
        self.tokens = tokens
        self.password_hasher = PasswordHasher()

    def login(self, password: str) -> str:
        """
        Check the admin password and issue an admin JWT.

        Raises:
            AuthenticationError: Wrong password or admin login not configured
        """
        if not self.password_hash or not self.tokens.jwt_secret:
            logger.error("admin_login_not_configured")
            raise AuthenticationError("admin login not configured")

        try:
            self.password_hasher.verify(self.password_hash, password)
        except VerifyMismatchError:
            logger.warning("admin_login_failed")
            raise AuthenticationError("invalid password")
        except (InvalidHashError, VerificationError) as e:
            logger.error("admin_password_hash_invalid", error=str(e))
            raise AuthenticationError("admin login not configured")

        logger.info("admin_login_success")
        return self.tokens.create_token(ADMIN_SUBJECT, role=ADMIN_ROLE)

    def verify(self, token: str) -> bool:
        payload = self.tokens.verify_token(token)
        return payload is not None and payload.get("role") == ADMIN_ROLE

    @property
    def expires_in_seconds(self) -> int:
        return self.tokens.jwt_expire_hours * 3600
