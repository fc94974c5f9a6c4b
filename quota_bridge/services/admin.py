"""
Admin Service - Operator views and maintenance actions.

Rebind skips the ownership check: the operator is asserting the link.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from quota_bridge.db.models import ClaimRecord, DonationRecord, LedgerKey, User
from quota_bridge.exceptions import RecordNotFoundError
from quota_bridge.models.domain import AccountSnapshot
from quota_bridge.services.admin_config import AdminConfigProvider
from quota_bridge.services.gateway_client import GatewayClient
from quota_bridge.services.key_ledger import KeyLedger, hash_key
from quota_bridge.services.user import bind_locks
from quota_bridge.services.user_resolver import UserResolver

logger = get_logger(__name__)


@dataclass(frozen=True)
class UserSummary:
    """User row plus claim and donation totals."""

    external_auth_id: str
    username: str
    bound_account_id: int
    created_at: datetime
    claim_count: int
    claim_quota_total: int
    donation_count: int
    donated_keys_total: int
    donation_quota_total: int


@dataclass(frozen=True)
class PurgeResult:
    external_auth_id: str
    claims_deleted: int
    donations_deleted: int
    keys_deleted: int


class AdminService:
    """Admin-only operations over identities, records and the ledger."""

    def __init__(self, session: AsyncSession, gateway: GatewayClient) -> None:
        self.session = session
        self.gateway = gateway
        self.ledger = KeyLedger(session)

    async def list_users(self) -> list[UserSummary]:
        """Every identity with aggregate claim and donation totals, newest first."""
        claims = (
            select(
                ClaimRecord.external_auth_id.label("auth_id"),
                func.count(ClaimRecord.id).label("claim_count"),
                func.coalesce(func.sum(ClaimRecord.quota_added), 0).label("claim_quota_total"),
            )
            .group_by(ClaimRecord.external_auth_id)
            .subquery()
        )
        donations = (
            select(
                DonationRecord.external_auth_id.label("auth_id"),
                func.count(DonationRecord.id).label("donation_count"),
                func.coalesce(func.sum(DonationRecord.keys_count), 0).label("donated_keys_total"),
                func.coalesce(func.sum(DonationRecord.total_quota_added), 0).label(
                    "donation_quota_total"
                ),
            )
            .group_by(DonationRecord.external_auth_id)
            .subquery()
        )
        stmt = (
            select(
                User,
                func.coalesce(claims.c.claim_count, 0),
                func.coalesce(claims.c.claim_quota_total, 0),
                func.coalesce(donations.c.donation_count, 0),
                func.coalesce(donations.c.donated_keys_total, 0),
                func.coalesce(donations.c.donation_quota_total, 0),
            )
            .outerjoin(claims, claims.c.auth_id == User.external_auth_id)
            .outerjoin(donations, donations.c.auth_id == User.external_auth_id)
            .order_by(User.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [
            UserSummary(
                external_auth_id=user.external_auth_id,
                username=user.username,
                bound_account_id=user.bound_account_id,
                created_at=user.created_at,
                claim_count=int(claim_count),
                claim_quota_total=int(claim_total),
                donation_count=int(donation_count),
                donated_keys_total=int(keys_total),
                donation_quota_total=int(donation_total),
            )
            for user, claim_count, claim_total, donation_count, keys_total, donation_total in (
                result.all()
            )
        ]

    async def export_keys(self) -> list[LedgerKey]:
        return await self.ledger.list_all()

    async def delete_keys(self, keys: list[str], key_hashes: list[str]) -> int:
        """Remove ledger rows by raw key or by hash."""
        hashes = {hash_key(k) for k in keys if k.strip()}
        hashes.update(h.strip().lower() for h in key_hashes if h.strip())
        return await self.ledger.delete(sorted(hashes))

    async def purge_user(self, external_auth_id: str) -> PurgeResult:
        """Delete an identity and everything it owns."""
        user = await self._get_user(external_auth_id)

        keys_deleted = await self.ledger.delete_for_owner(external_auth_id)
        claims = await self.session.execute(
            delete(ClaimRecord)
            .where(ClaimRecord.external_auth_id == external_auth_id)
            .returning(ClaimRecord.id)
        )
        claims_deleted = len(claims.scalars().all())
        donations = await self.session.execute(
            delete(DonationRecord)
            .where(DonationRecord.external_auth_id == external_auth_id)
            .returning(DonationRecord.id)
        )
        donations_deleted = len(donations.scalars().all())
        await self.session.delete(user)
        await self.session.commit()

        logger.info(
            "identity_purged",
            external_auth_id=external_auth_id,
            claims_deleted=claims_deleted,
            donations_deleted=donations_deleted,
            keys_deleted=keys_deleted,
        )
        return PurgeResult(
            external_auth_id=external_auth_id,
            claims_deleted=claims_deleted,
            donations_deleted=donations_deleted,
            keys_deleted=keys_deleted,
        )

    async def rebind(self, external_auth_id: str, username: str) -> AccountSnapshot:
        """Point an identity at a different gateway account. No bonus is credited."""
        tunables = await AdminConfigProvider(self.session).get()
        snapshot = await UserResolver(self.gateway, tunables.directory_session_token).resolve(
            username
        )

        async with bind_locks.lock(external_auth_id):
            user = await self._get_user(external_auth_id)
            previous = user.bound_account_id
            user.username = snapshot.username
            user.bound_account_id = snapshot.account_id
            await self.session.commit()

        logger.info(
            "identity_rebound_by_admin",
            external_auth_id=external_auth_id,
            previous_account_id=previous,
            account_id=snapshot.account_id,
        )
        return snapshot

    async def _get_user(self, external_auth_id: str) -> User:
        result = await self.session.execute(
            select(User).where(User.external_auth_id == external_auth_id)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise RecordNotFoundError("user", external_auth_id)
        return user
