"""
Quota Creditor - Increase an account's gateway quota.

The gateway only offers "set quota", so a credit is read-modify-write:
fetch a fresh snapshot, then set quota + amount. Credits for the same
account are serialized through a process-wide KeyedLocks so two of them
are never in flight at once. Nothing is retried here; a transport error
may or may not have landed, and retrying could credit twice.
"""

from structlog import get_logger

from quota_bridge.exceptions import ExternalRejectionError, ExternalTransportError
from quota_bridge.models.domain import CreditResult
from quota_bridge.observability.metrics import metrics
from quota_bridge.observability.tracing import trace_operation
from quota_bridge.services.keyed_lock import KeyedLocks
from quota_bridge.services.user_resolver import UserResolver

logger = get_logger(__name__)

# One lock per gateway account id, shared by every request in this process
account_locks = KeyedLocks()


class QuotaCreditor:
    """Serialized quota increments against the gateway."""

    def __init__(self, resolver: UserResolver, locks: KeyedLocks | None = None) -> None:
        self.resolver = resolver
        self.locks = locks or account_locks

    async def credit(
        self, account_id: int, username: str, amount: int, flow: str
    ) -> CreditResult:
        """
        Add `amount` to the account's quota.

        Args:
            account_id: Gateway account id the caller resolved earlier
            username: Username used to re-read the live snapshot
            amount: Quota units to add (> 0)
            flow: Metrics label (claim, donation, bind_bonus)

        Raises:
            ExternalRejectionError: Gateway declined, or the username now maps elsewhere
            ExternalTransportError: Network failure or timeout
        """
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")

        async with self.locks.lock(account_id):
            with trace_operation("quota_credit", account_id=account_id, amount=amount, flow=flow):
                try:
                    snapshot = await self.resolver.resolve(username)
                    if snapshot.account_id != account_id:
                        raise ExternalRejectionError(
                            "gateway",
                            f"username {username} now maps to account {snapshot.account_id}",
                        )

                    new_quota = snapshot.quota + amount
                    await self.resolver.gateway.update_quota(
                        account_id,
                        new_quota,
                        snapshot.username,
                        snapshot.group,
                        self.resolver.session_token,
                    )
                except ExternalRejectionError as e:
                    metrics.record_credit(flow, "rejected")
                    logger.warning(
                        "quota_credit_rejected", account_id=account_id, flow=flow, reason=e.message
                    )
                    raise
                except ExternalTransportError:
                    metrics.record_credit(flow, "transport_error")
                    logger.error("quota_credit_transport_error", account_id=account_id, flow=flow)
                    raise

        metrics.record_credit(flow, "success", amount)
        logger.info(
            "quota_credited",
            account_id=account_id,
            flow=flow,
            amount=amount,
            quota_before=snapshot.quota,
            quota_after=new_quota,
        )
        return CreditResult(
            account_id=account_id,
            amount=amount,
            quota_before=snapshot.quota,
            quota_after=new_quota,
        )
