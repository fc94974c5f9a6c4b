"""
Admin API routes for operating the quota bridge.

Everything except /admin/login requires an admin JWT (bearer header or
admin_token cookie).
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from quota_bridge.api.dependencies import (
    ADMIN_COOKIE_NAME,
    get_admin_auth_service,
    get_admin_service,
    get_claim_gate,
    get_donation_service,
    require_admin,
    to_http_exception,
)
from quota_bridge.api.routes import claim_item, donation_item
from quota_bridge.db.session import get_write_db
from quota_bridge.exceptions import AuthenticationError, QuotaBridgeError
from quota_bridge.models.api import (
    AdminConfigResponse,
    AdminConfigUpdateRequest,
    AdminLoginRequest,
    AdminLoginResponse,
    AdminUserItem,
    BindResponse,
    ClaimRecordItem,
    DeleteKeysRequest,
    DeleteKeysResponse,
    DonationRecordItem,
    LedgerKeyItem,
    PurgeResponse,
    RebindRequest,
    RetryPushResponse,
)
from quota_bridge.models.domain import AdminTunables
from quota_bridge.services.admin import AdminService
from quota_bridge.services.admin_config import AdminConfigProvider
from quota_bridge.services.claim import ClaimGate
from quota_bridge.services.donation import DonationService
from quota_bridge.services.session_tokens import AdminAuthService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def config_response(tunables: AdminTunables) -> AdminConfigResponse:
    return AdminConfigResponse(
        claim_quota=tunables.claim_quota,
        per_key_quota=tunables.per_key_quota,
        min_quota_threshold=tunables.min_quota_threshold,
        push_endpoint=tunables.push_endpoint,
        push_group_id=tunables.push_group_id,
        push_auth_token_set=bool(tunables.push_auth_token),
        directory_session_token_set=bool(tunables.directory_session_token),
        updated_at=tunables.updated_at,
    )


@router.post("/login", response_model=AdminLoginResponse)
async def admin_login(
    request: AdminLoginRequest,
    response: Response,
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
) -> AdminLoginResponse:
    """Exchange the admin password for an admin JWT (also set as a cookie)."""
    try:
        token = auth_service.login(request.password)
    except AuthenticationError as exc:
        raise to_http_exception(exc, "admin_login") from exc

    response.set_cookie(
        ADMIN_COOKIE_NAME,
        token,
        max_age=auth_service.expires_in_seconds,
        httponly=True,
        secure=True,
        samesite="lax",
    )
    return AdminLoginResponse(access_token=token, expires_in=auth_service.expires_in_seconds)


@router.get(
    "/config", response_model=AdminConfigResponse, dependencies=[Depends(require_admin)]
)
async def get_config(db: AsyncSession = Depends(get_write_db)) -> AdminConfigResponse:
    return config_response(await AdminConfigProvider(db).get())


@router.put(
    "/config", response_model=AdminConfigResponse, dependencies=[Depends(require_admin)]
)
async def update_config(
    request: AdminConfigUpdateRequest,
    db: AsyncSession = Depends(get_write_db),
) -> AdminConfigResponse:
    """Partial update; omitted fields keep their value."""
    tunables = await AdminConfigProvider(db).update(**request.model_dump(exclude_none=True))
    return config_response(tunables)


@router.get(
    "/claims", response_model=list[ClaimRecordItem], dependencies=[Depends(require_admin)]
)
async def list_claims(claims: ClaimGate = Depends(get_claim_gate)) -> list[ClaimRecordItem]:
    return [claim_item(r) for r in await claims.list_all()]


@router.get(
    "/donations", response_model=list[DonationRecordItem], dependencies=[Depends(require_admin)]
)
async def list_donations(
    donations: DonationService = Depends(get_donation_service),
) -> list[DonationRecordItem]:
    return [donation_item(r) for r in await donations.list_all()]


@router.get("/users", response_model=list[AdminUserItem], dependencies=[Depends(require_admin)])
async def list_users(admin: AdminService = Depends(get_admin_service)) -> list[AdminUserItem]:
    """Identities with claim and donation totals."""
    return [
        AdminUserItem(
            external_auth_id=u.external_auth_id,
            username=u.username,
            bound_account_id=u.bound_account_id,
            created_at=u.created_at,
            claim_count=u.claim_count,
            claim_quota_total=u.claim_quota_total,
            donation_count=u.donation_count,
            donated_keys_total=u.donated_keys_total,
            donation_quota_total=u.donation_quota_total,
        )
        for u in await admin.list_users()
    ]


@router.get(
    "/keys/export", response_model=list[LedgerKeyItem], dependencies=[Depends(require_admin)]
)
async def export_keys(admin: AdminService = Depends(get_admin_service)) -> list[LedgerKeyItem]:
    """Every consumed key, newest first."""
    keys = await admin.export_keys()
    logger.info("ledger_keys_exported", count=len(keys))
    return [
        LedgerKeyItem(
            key_hash=k.key_hash,
            key_value=k.key_value,
            owner_auth_id=k.owner_auth_id,
            username=k.username,
            donation_record_id=k.donation_record_id,
            created_at=k.created_at,
        )
        for k in keys
    ]


@router.post(
    "/keys/delete", response_model=DeleteKeysResponse, dependencies=[Depends(require_admin)]
)
async def delete_keys(
    request: DeleteKeysRequest,
    admin: AdminService = Depends(get_admin_service),
) -> DeleteKeysResponse:
    if not request.keys and not request.key_hashes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="No keys or key hashes given"
        )
    deleted = await admin.delete_keys(request.keys, request.key_hashes)
    return DeleteKeysResponse(deleted=deleted)


@router.delete(
    "/users/{external_auth_id}",
    response_model=PurgeResponse,
    dependencies=[Depends(require_admin)],
)
async def purge_user(
    external_auth_id: str,
    admin: AdminService = Depends(get_admin_service),
) -> PurgeResponse:
    """Delete an identity with its claims, donations and ledger keys."""
    try:
        result = await admin.purge_user(external_auth_id)
    except QuotaBridgeError as exc:
        raise to_http_exception(exc, "purge_user") from exc

    return PurgeResponse(
        external_auth_id=result.external_auth_id,
        claims_deleted=result.claims_deleted,
        donations_deleted=result.donations_deleted,
        keys_deleted=result.keys_deleted,
    )


@router.post(
    "/users/{external_auth_id}/rebind",
    response_model=BindResponse,
    dependencies=[Depends(require_admin)],
)
async def rebind_user(
    external_auth_id: str,
    request: RebindRequest,
    admin: AdminService = Depends(get_admin_service),
) -> BindResponse:
    try:
        snapshot = await admin.rebind(external_auth_id, request.username)
    except QuotaBridgeError as exc:
        raise to_http_exception(exc, "admin_rebind") from exc

    return BindResponse(
        username=snapshot.username,
        account_id=snapshot.account_id,
        first_bind=False,
        bonus_quota=0,
        message="rebound by admin",
    )


@router.post(
    "/donations/{external_auth_id}/{created_at}/retry",
    response_model=RetryPushResponse,
    dependencies=[Depends(require_admin)],
)
async def retry_push(
    external_auth_id: str,
    created_at: int,
    donations: DonationService = Depends(get_donation_service),
) -> RetryPushResponse:
    try:
        outcome = await donations.retry_push(external_auth_id, created_at)
    except QuotaBridgeError as exc:
        raise to_http_exception(exc, "admin_retry_push") from exc

    return RetryPushResponse(
        push_status=outcome.status,
        push_message=outcome.message,
        failed_keys_count=len(outcome.failed_keys),
    )
