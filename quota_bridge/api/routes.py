"""
API Routes - User-facing endpoints for bind, quota, claim and donation.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from quota_bridge.api.dependencies import (
    get_claim_gate,
    get_current_identity,
    get_donation_service,
    get_user_service,
    to_http_exception,
)
from quota_bridge.config import settings
from quota_bridge.db.models import ClaimRecord, DonationRecord
from quota_bridge.db.session import get_write_db
from quota_bridge.exceptions import QuotaBridgeError
from quota_bridge.models.api import (
    BindRequest,
    BindResponse,
    ClaimRecordItem,
    ClaimResponse,
    DonateRequest,
    DonateResponse,
    DonationRecordItem,
    HealthResponse,
    PushStatus,
    QuotaResponse,
    RetryPushResponse,
)
from quota_bridge.models.domain import Identity
from quota_bridge.services.claim import ClaimGate
from quota_bridge.services.donation import DonationService
from quota_bridge.services.user import UserService

router = APIRouter()


def claim_item(record: ClaimRecord) -> ClaimRecordItem:
    return ClaimRecordItem(
        external_auth_id=record.external_auth_id,
        username=record.username,
        quota_added=record.quota_added,
        claim_date=record.claim_date,
        created_at=record.created_at,
    )


def donation_item(record: DonationRecord) -> DonationRecordItem:
    return DonationRecordItem(
        external_auth_id=record.external_auth_id,
        username=record.username,
        keys_count=record.keys_count,
        total_quota_added=record.total_quota_added,
        push_status=PushStatus(record.push_status),
        push_message=record.push_message,
        failed_keys_count=len(record.failed_keys or []),
        created_at=record.created_ts,
    )


@router.post("/v1/bind", response_model=BindResponse)
async def bind_account(
    request: BindRequest,
    identity: Identity = Depends(get_current_identity),
    users: UserService = Depends(get_user_service),
) -> BindResponse:
    """
    Bind the caller to a gateway account by username.

    The account must already be linked to the caller's external identity.
    """
    try:
        result = await users.bind(identity, request.username)
    except QuotaBridgeError as exc:
        raise to_http_exception(exc, "bind") from exc

    return BindResponse(
        username=result.snapshot.username,
        account_id=result.snapshot.account_id,
        first_bind=result.first_bind,
        bonus_quota=result.bonus_quota,
        message=result.message,
    )


@router.get("/v1/quota", response_model=QuotaResponse)
async def get_quota(
    identity: Identity = Depends(get_current_identity),
    users: UserService = Depends(get_user_service),
) -> QuotaResponse:
    """Live gateway quota and whether today's grant can be claimed."""
    try:
        view = await users.quota_view(identity)
    except QuotaBridgeError as exc:
        raise to_http_exception(exc, "quota_view") from exc

    return QuotaResponse(
        username=view.username,
        display_name=view.display_name,
        quota=view.quota,
        used_quota=view.used_quota,
        total=view.total,
        claimed_today=view.claimed_today,
        can_claim=view.can_claim,
        min_quota_threshold=view.min_quota_threshold,
    )


@router.post("/v1/claim", response_model=ClaimResponse)
async def claim_daily(
    identity: Identity = Depends(get_current_identity),
    claims: ClaimGate = Depends(get_claim_gate),
) -> ClaimResponse:
    """Claim the daily free grant."""
    try:
        result = await claims.claim_daily(identity)
    except QuotaBridgeError as exc:
        raise to_http_exception(exc, "claim") from exc

    return ClaimResponse(
        quota_added=result.quota_added,
        claim_date=result.claim_date,
        quota_after=result.quota_after,
        message=result.message,
    )


@router.post("/v1/donate", response_model=DonateResponse)
async def donate_keys(
    request: DonateRequest,
    identity: Identity = Depends(get_current_identity),
    donations: DonationService = Depends(get_donation_service),
) -> DonateResponse:
    """
    Donate keys in exchange for quota.

    Quota is credited before the keys are pushed downstream; a failed push
    is reported in push_status and can be retried.
    """
    try:
        outcome = await donations.donate(identity, request.keys)
    except QuotaBridgeError as exc:
        raise to_http_exception(exc, "donate") from exc

    report = outcome.report
    return DonateResponse(
        submitted=report.submitted_count,
        live=len(report.live),
        already_used=len(report.already_used),
        invalid_format=len(report.invalid_format),
        dead=len(report.dead),
        duplicate_in_batch=len(report.duplicate_in_batch),
        quota_added=outcome.quota_added,
        push_status=outcome.push.status,
        push_message=outcome.push.message,
        failed_push_count=len(outcome.push.failed_keys),
        created_at=outcome.created_at,
        message=outcome.message,
    )


@router.get("/v1/claims", response_model=list[ClaimRecordItem])
async def list_my_claims(
    identity: Identity = Depends(get_current_identity),
    claims: ClaimGate = Depends(get_claim_gate),
) -> list[ClaimRecordItem]:
    """The caller's claims, newest first."""
    return [claim_item(r) for r in await claims.history(identity.external_auth_id)]


@router.get("/v1/donations", response_model=list[DonationRecordItem])
async def list_my_donations(
    identity: Identity = Depends(get_current_identity),
    donations: DonationService = Depends(get_donation_service),
) -> list[DonationRecordItem]:
    """The caller's donations, newest first."""
    return [donation_item(r) for r in await donations.history(identity.external_auth_id)]


@router.post("/v1/donations/{created_at}/retry", response_model=RetryPushResponse)
async def retry_my_push(
    created_at: int,
    identity: Identity = Depends(get_current_identity),
    donations: DonationService = Depends(get_donation_service),
) -> RetryPushResponse:
    """Re-push only the keys that failed on one of the caller's donations."""
    try:
        outcome = await donations.retry_push(identity.external_auth_id, created_at)
    except QuotaBridgeError as exc:
        raise to_http_exception(exc, "retry_push") from exc

    return RetryPushResponse(
        push_status=outcome.status,
        push_message=outcome.message,
        failed_keys_count=len(outcome.failed_keys),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_write_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="database disconnected",
        ) from exc

    return HealthResponse(status="healthy", database="connected", version=settings.api_version)
