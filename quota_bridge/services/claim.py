"""
Claim Gate - Daily free grant for bound identities with low quota.

One grant per identity per UTC calendar date. The "already claimed" check
reads the claim_records table under a per-identity lock; the unique
constraint on (external_auth_id, claim_date) backs it up across processes.
"""

from datetime import UTC, date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from quota_bridge.db.models import ClaimRecord
from quota_bridge.exceptions import (
    AboveThresholdError,
    AlreadyClaimedTodayError,
    NotBoundError,
)
from quota_bridge.models.domain import ClaimResult, Identity
from quota_bridge.observability.metrics import metrics
from quota_bridge.services.admin_config import AdminConfigProvider
from quota_bridge.services.gateway_client import GatewayClient
from quota_bridge.services.keyed_lock import KeyedLocks
from quota_bridge.services.quota_creditor import QuotaCreditor
from quota_bridge.services.user_resolver import UserResolver

logger = get_logger(__name__)

# Serializes claim attempts per external identity
claim_locks = KeyedLocks()


def utc_today() -> date:
    """Current calendar date in UTC."""
    return datetime.now(UTC).date()


class ClaimGate:
    """Daily claim flow and claim history."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayClient,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.locks = locks or claim_locks

    async def has_claimed(self, external_auth_id: str, claim_date: date) -> bool:
        """Durable check for a claim on the given date."""
        stmt = select(ClaimRecord.id).where(
            ClaimRecord.external_auth_id == external_auth_id,
            ClaimRecord.claim_date == claim_date,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def claim_daily(self, identity: Identity) -> ClaimResult:
        """
        Grant today's free quota.

        Raises:
            NotBoundError: Identity has no gateway account
            AlreadyClaimedTodayError: A claim exists for today
            AboveThresholdError: Live quota is not below the threshold
            ExternalTransportError / ExternalRejectionError: From the gateway
        """
        if not identity.is_bound or identity.username is None:
            raise NotBoundError(identity.external_auth_id)

        tunables = await AdminConfigProvider(self.session).get()
        resolver = UserResolver(self.gateway, tunables.directory_session_token)

        async with self.locks.lock(identity.external_auth_id):
            today = utc_today()
            if await self.has_claimed(identity.external_auth_id, today):
                metrics.claims_total.labels(outcome="already_claimed").inc()
                raise AlreadyClaimedTodayError(identity.external_auth_id, today)

            snapshot = await resolver.resolve(identity.username)
            if snapshot.quota >= tunables.min_quota_threshold:
                metrics.claims_total.labels(outcome="above_threshold").inc()
                raise AboveThresholdError(snapshot.quota, tunables.min_quota_threshold)

            credit = await QuotaCreditor(resolver).credit(
                identity.bound_account_id, snapshot.username, tunables.claim_quota, flow="claim"
            )

            try:
                self.session.add(
                    ClaimRecord(
                        external_auth_id=identity.external_auth_id,
                        username=snapshot.username,
                        quota_added=credit.amount,
                        claim_date=today,
                    )
                )
                await self.session.commit()
            except Exception:
                # Quota already landed on the gateway; report success anyway
                await self.session.rollback()
                logger.error(
                    "claim_record_persist_failed",
                    external_auth_id=identity.external_auth_id,
                    claim_date=str(today),
                    quota_added=credit.amount,
                    exc_info=True,
                )

        metrics.claims_total.labels(outcome="granted").inc()
        logger.info(
            "daily_claim_granted",
            external_auth_id=identity.external_auth_id,
            quota_added=credit.amount,
        )
        return ClaimResult(
            quota_added=credit.amount,
            claim_date=today,
            quota_after=credit.quota_after,
            message=f"Claimed {credit.amount} quota for {today.isoformat()}",
        )

    async def history(self, external_auth_id: str) -> list[ClaimRecord]:
        """Claims for one identity, newest first."""
        stmt = (
            select(ClaimRecord)
            .where(ClaimRecord.external_auth_id == external_auth_id)
            .order_by(ClaimRecord.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self) -> list[ClaimRecord]:
        """Every claim, newest first."""
        result = await self.session.execute(
            select(ClaimRecord).order_by(ClaimRecord.created_at.desc())
        )
        return list(result.scalars().all())
