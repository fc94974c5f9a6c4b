"""
User Service - Identity records, binding, and the live quota view.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from quota_bridge.config import settings
from quota_bridge.db.models import User
from quota_bridge.exceptions import (
    ExternalRejectionError,
    ExternalTransportError,
    NotBoundError,
)
from quota_bridge.models.domain import BindResult, Identity, QuotaView
from quota_bridge.services.admin_config import AdminConfigProvider
from quota_bridge.services.claim import ClaimGate, utc_today
from quota_bridge.services.gateway_client import GatewayClient
from quota_bridge.services.keyed_lock import KeyedLocks
from quota_bridge.services.quota_creditor import QuotaCreditor
from quota_bridge.services.user_resolver import UserResolver

logger = get_logger(__name__)

# Serializes bind and admin rebind per external identity
bind_locks = KeyedLocks()


def user_to_identity(user: User) -> Identity:
    return Identity(
        external_auth_id=user.external_auth_id,
        bound_account_id=user.bound_account_id,
        username=user.username or None,
    )


class UserService:
    """Identity lookups plus the bind and quota flows."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayClient,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.locks = locks or bind_locks

    async def find_user(self, external_auth_id: str) -> User | None:
        stmt = select(User).where(User.external_auth_id == external_auth_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_identity(
        self, external_auth_id: str, display_name: str | None = None
    ) -> Identity:
        """Load the identity for a logged-in session, creating it on first sight."""
        user = await self.find_user(external_auth_id)
        if user is not None:
            return user_to_identity(user)

        user = User(external_auth_id=external_auth_id, display_name=display_name, username="")
        self.session.add(user)
        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError:
            # Concurrent first request created it
            await self.session.rollback()
            user = await self.find_user(external_auth_id)
            if user is None:
                raise
            return user_to_identity(user)

        logger.info("identity_created", external_auth_id=external_auth_id)
        return user_to_identity(user)

    async def bind(self, identity: Identity, username: str) -> BindResult:
        """
        Bind an identity to the gateway account named `username`.

        The account must be linked to the same external identity. The first
        bind of an identity earns a one-time bonus; a failed bonus credit is
        reported in the message and does not undo the bind.
        """
        async with self.locks.lock(identity.external_auth_id):
            return await self._bind_locked(identity, username)

    async def _bind_locked(self, identity: Identity, username: str) -> BindResult:
        tunables = await AdminConfigProvider(self.session).get()
        resolver = UserResolver(self.gateway, tunables.directory_session_token)
        snapshot = await resolver.resolve_and_authorize(identity, username)

        # Read under the lock: the row decides whether the bonus is still owed
        user = await self.find_user(identity.external_auth_id)
        first_bind = user is None or user.bound_account_id == 0
        if user is None:
            user = User(external_auth_id=identity.external_auth_id)
            self.session.add(user)
        user.username = snapshot.username
        user.bound_account_id = snapshot.account_id
        if snapshot.display_name:
            user.display_name = snapshot.display_name
        await self.session.commit()

        bound = user_to_identity(user)
        logger.info(
            "identity_bound",
            external_auth_id=identity.external_auth_id,
            account_id=snapshot.account_id,
            first_bind=first_bind,
        )

        if not first_bind:
            return BindResult(
                identity=bound, snapshot=snapshot, first_bind=False, bonus_quota=0, message="rebound"
            )

        bonus = settings.first_bind_bonus
        if bonus <= 0:
            return BindResult(
                identity=bound, snapshot=snapshot, first_bind=True, bonus_quota=0, message="bound"
            )

        try:
            await QuotaCreditor(resolver).credit(
                snapshot.account_id, snapshot.username, bonus, flow="bind_bonus"
            )
        except (ExternalRejectionError, ExternalTransportError) as e:
            logger.warning(
                "bind_bonus_failed", external_auth_id=identity.external_auth_id, error=str(e)
            )
            return BindResult(
                identity=bound,
                snapshot=snapshot,
                first_bind=True,
                bonus_quota=0,
                message="bound, bonus credit failed",
            )

        return BindResult(
            identity=bound,
            snapshot=snapshot,
            first_bind=True,
            bonus_quota=bonus,
            message="bound, bonus credited",
        )

    async def quota_view(self, identity: Identity) -> QuotaView:
        """Live quota from the directory plus today's claim eligibility."""
        if not identity.is_bound or identity.username is None:
            raise NotBoundError(identity.external_auth_id)

        tunables = await AdminConfigProvider(self.session).get()
        resolver = UserResolver(self.gateway, tunables.directory_session_token)
        # Stored binding is trusted here; an admin rebind may point elsewhere
        snapshot = await resolver.resolve(identity.username)

        claimed_today = await ClaimGate(self.session, self.gateway).has_claimed(
            identity.external_auth_id, utc_today()
        )
        return QuotaView(
            username=snapshot.username,
            display_name=snapshot.display_name,
            quota=snapshot.quota,
            used_quota=snapshot.used_quota,
            total=snapshot.total_quota,
            claimed_today=claimed_today,
            can_claim=snapshot.quota < tunables.min_quota_threshold and not claimed_today,
            min_quota_threshold=tunables.min_quota_threshold,
        )
