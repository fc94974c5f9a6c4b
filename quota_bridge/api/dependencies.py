"""
FastAPI Dependencies - Authentication, shared HTTP clients, and services.

NO DICTIONARIES - All dependencies return typed objects.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from quota_bridge.config import settings
from quota_bridge.db.session import get_write_db
from quota_bridge.exceptions import (
    AboveThresholdError,
    AlreadyClaimedTodayError,
    AuthenticationError,
    DirectoryNotConfiguredError,
    ExternalRejectionError,
    ExternalTransportError,
    InvalidUsernameError,
    NoFailedKeysError,
    NotBoundError,
    NotFoundError,
    NoValidKeysError,
    OwnershipMismatchError,
    PushNotConfiguredError,
    QuotaBridgeError,
)
from quota_bridge.models.domain import Identity
from quota_bridge.observability.metrics import metrics
from quota_bridge.services.admin import AdminService
from quota_bridge.services.claim import ClaimGate
from quota_bridge.services.donation import DonationService
from quota_bridge.services.gateway_client import GatewayClient
from quota_bridge.services.key_pool import KeyPoolClient
from quota_bridge.services.key_probe import KeyProbe
from quota_bridge.services.push_coordinator import PushCoordinator
from quota_bridge.services.session_tokens import AdminAuthService, SessionTokenService
from quota_bridge.services.user import UserService

logger = get_logger(__name__)

ADMIN_COOKIE_NAME = "admin_token"

# Bearer token scheme; cookies are the fallback
bearer_scheme = HTTPBearer(auto_error=False)

# ============================================================================
# Shared HTTP clients (one connection pool each per process)
# ============================================================================

_gateway_client: GatewayClient | None = None
_key_probe: KeyProbe | None = None
_key_pool_client: KeyPoolClient | None = None


def get_gateway_client() -> GatewayClient:
    global _gateway_client
    if _gateway_client is None:
        _gateway_client = GatewayClient(
            base_url=settings.gateway_base_url,
            api_user=settings.gateway_api_user,
            timeout_seconds=settings.gateway_timeout_seconds,
        )
    return _gateway_client


def get_key_probe() -> KeyProbe:
    global _key_probe
    if _key_probe is None:
        _key_probe = KeyProbe(
            base_url=settings.probe_base_url,
            model=settings.probe_model,
            timeout_seconds=settings.probe_timeout_seconds,
        )
    return _key_probe


def get_key_pool_client() -> KeyPoolClient:
    global _key_pool_client
    if _key_pool_client is None:
        _key_pool_client = KeyPoolClient(timeout_seconds=settings.push_timeout_seconds)
    return _key_pool_client


async def close_http_clients() -> None:
    """Close shared HTTP clients (for graceful shutdown)."""
    global _gateway_client, _key_probe, _key_pool_client
    for client in (_gateway_client, _key_probe, _key_pool_client):
        if client is not None:
            await client.aclose()
    _gateway_client = None
    _key_probe = None
    _key_pool_client = None


# ============================================================================
# Services
# ============================================================================


def get_user_service(
    db: AsyncSession = Depends(get_write_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> UserService:
    return UserService(db, gateway)


def get_claim_gate(
    db: AsyncSession = Depends(get_write_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> ClaimGate:
    return ClaimGate(db, gateway)


def get_donation_service(
    db: AsyncSession = Depends(get_write_db),
    gateway: GatewayClient = Depends(get_gateway_client),
    probe: KeyProbe = Depends(get_key_probe),
    pool_client: KeyPoolClient = Depends(get_key_pool_client),
) -> DonationService:
    return DonationService(db, gateway, probe, PushCoordinator(pool_client))


def get_admin_service(
    db: AsyncSession = Depends(get_write_db),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> AdminService:
    return AdminService(db, gateway)


# ============================================================================
# Authentication
# ============================================================================


def get_session_token_service() -> SessionTokenService:
    return SessionTokenService(jwt_secret=settings.SESSION_JWT_SECRET)


def get_admin_auth_service() -> AdminAuthService:
    return AdminAuthService(
        password_hash=settings.ADMIN_PASSWORD_HASH,
        tokens=SessionTokenService(
            jwt_secret=settings.ADMIN_JWT_SECRET,
            jwt_expire_hours=settings.admin_jwt_expire_hours,
        ),
    )


def _extract_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None, cookie_name: str
) -> str | None:
    """Authorization header first, then cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(cookie_name)


async def get_current_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: SessionTokenService = Depends(get_session_token_service),
    users: UserService = Depends(get_user_service),
) -> Identity:
    """
    Resolve the caller's identity from their session JWT.

    The token's `sub` is the external auth id. The identity row is created
    the first time a session is seen.

    Raises:
        HTTPException(401): Missing, invalid or expired session
    """
    token = _extract_token(request, credentials, settings.session_cookie_name)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = tokens.verify_token(token)
    if payload is None or not str(payload.get("sub", "")).strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )

    name = payload.get("name")
    return await users.get_or_create_identity(
        str(payload["sub"]).strip(), display_name=str(name) if name else None
    )


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
) -> None:
    """
    Guard for admin routes.

    Raises:
        HTTPException(401): Missing or invalid admin token
    """
    token = _extract_token(request, credentials, ADMIN_COOKIE_NAME)
    if not token or not auth_service.verify(token):
        logger.warning("admin_auth_rejected", has_token=bool(token))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ============================================================================
# Error translation
# ============================================================================


def to_http_exception(exc: QuotaBridgeError, operation: str) -> HTTPException:
    """Map a domain error to the HTTP status callers see."""
    metrics.record_error(type(exc).__name__, operation)

    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidUsernameError, NoValidKeysError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, OwnershipMismatchError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Account {exc.username} is linked to a different identity "
                f"({exc.actual_auth_id or 'none'})"
            ),
        )
    if isinstance(exc, (NotBoundError, AlreadyClaimedTodayError, AboveThresholdError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NoFailedKeysError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (PushNotConfiguredError, DirectoryNotConfiguredError)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, ExternalRejectionError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)
    if isinstance(exc, ExternalTransportError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc))
    if isinstance(exc, AuthenticationError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.error("unmapped_domain_error", error_type=type(exc).__name__, error=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
