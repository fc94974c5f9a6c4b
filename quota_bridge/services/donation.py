"""
Donation Service - Exchange live keys for quota, then push them downstream.

Order of a donation:
1. validate the batch (dedupe, format, ledger, liveness probe)
2. credit len(live) * per_key_quota on the gateway
3. record the live keys in the ledger
4. create the donation record (push_status=pending)
5. push the live keys downstream
6. store the push outcome on the record

Quota is credited before the push result is known, so a failed push leaves
quota granted; the failed keys stay on the record for retry_push. Steps 1
to 3 run while holding per-key-hash locks so two concurrent donations of
the same key cannot both be credited.
"""

import time

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from quota_bridge.config import settings
from quota_bridge.db.models import DonationRecord
from quota_bridge.exceptions import (
    NoFailedKeysError,
    NotBoundError,
    NoValidKeysError,
    PushNotConfiguredError,
    RecordNotFoundError,
)
from quota_bridge.models.api import PushStatus
from quota_bridge.models.domain import DonationOutcome, Identity, PushOutcome
from quota_bridge.observability.metrics import metrics
from quota_bridge.services.admin_config import AdminConfigProvider
from quota_bridge.services.gateway_client import GatewayClient
from quota_bridge.services.key_ledger import KeyLedger, LedgerEntry, hash_key
from quota_bridge.services.key_probe import KeyProbe
from quota_bridge.services.key_validator import KeyValidator
from quota_bridge.services.keyed_lock import KeyedLocks
from quota_bridge.services.push_coordinator import PushCoordinator
from quota_bridge.services.quota_creditor import QuotaCreditor
from quota_bridge.services.user_resolver import UserResolver

logger = get_logger(__name__)

# Locks on key hashes (donations) and on donation record handles (retries)
donation_locks = KeyedLocks()


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class DonationService:
    """Donation flow, push retry, and donation history."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayClient,
        probe: KeyProbe,
        push_coordinator: PushCoordinator,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.probe = probe
        self.push_coordinator = push_coordinator
        self.locks = locks or donation_locks
        self.ledger = KeyLedger(session, use_prefilter=settings.ledger_prefilter_enabled)

    async def donate(self, identity: Identity, raw_keys: list[str]) -> DonationOutcome:
        """
        Validate, credit, consume and push a batch of keys.

        Raises:
            NotBoundError: Identity has no gateway account
            NoValidKeysError: Nothing in the batch is live and unused (no side effects)
            ExternalTransportError / ExternalRejectionError: Credit failed (nothing consumed)
        """
        if not identity.is_bound or identity.username is None:
            raise NotBoundError(identity.external_auth_id)

        tunables = await AdminConfigProvider(self.session).get()
        resolver = UserResolver(self.gateway, tunables.directory_session_token)
        validator = KeyValidator(self.ledger, self.probe)

        candidate_hashes = {hash_key(k) for k in raw_keys if k.strip()}
        async with self.locks.hold_many(candidate_hashes):
            report = await validator.validate(raw_keys)
            if not report.live:
                logger.info(
                    "donation_no_valid_keys",
                    external_auth_id=identity.external_auth_id,
                    summary=report.summary(),
                )
                raise NoValidKeysError(report)

            amount = len(report.live) * tunables.per_key_quota
            credit = await QuotaCreditor(resolver).credit(
                identity.bound_account_id, identity.username, amount, flow="donation"
            )

            # From here on the gateway has been mutated; local failures are logged only
            try:
                await self.ledger.insert_if_absent(
                    [
                        LedgerEntry(
                            key=key,
                            owner_auth_id=identity.external_auth_id,
                            username=identity.username,
                        )
                        for key in report.live
                    ]
                )
            except Exception:
                await self.session.rollback()
                logger.error(
                    "ledger_insert_failed",
                    external_auth_id=identity.external_auth_id,
                    keys=len(report.live),
                    exc_info=True,
                )

        record = await self._create_record(identity, len(report.live), credit.amount)

        push = await self.push_coordinator.push(tunables, list(report.live))
        metrics.record_push("donate", push.status.value)

        if record is not None:
            await self._store_push_outcome(record, push)
            await self._link_ledger(record, report.live)

        logger.info(
            "donation_completed",
            external_auth_id=identity.external_auth_id,
            live=len(report.live),
            quota_added=credit.amount,
            push_status=push.status.value,
        )
        return DonationOutcome(
            report=report,
            quota_added=credit.amount,
            push=push,
            created_at=record.created_ts if record is not None else None,
            message=(
                f"Donated {len(report.live)} keys for {credit.amount} quota; "
                f"push {push.status.value}"
            ),
        )

    async def retry_push(self, external_auth_id: str, created_at: int) -> PushOutcome:
        """
        Push only the keys that failed last time.

        On success the record's failed_keys is cleared and status becomes
        success. Otherwise status is failed and failed_keys narrows to
        whatever the pool still rejected.

        Raises:
            RecordNotFoundError: No record for (identity, created_at)
            NoFailedKeysError: Record has nothing to retry
            PushNotConfiguredError: Push endpoint or token missing
        """
        async with self.locks.lock(("retry", external_auth_id, created_at)):
            record = await self.find_record(external_auth_id, created_at)
            if record is None:
                raise RecordNotFoundError("donation", f"{external_auth_id}/{created_at}")
            if not record.failed_keys:
                raise NoFailedKeysError(created_at)

            tunables = await AdminConfigProvider(self.session).get()
            if not tunables.push_configured:
                raise PushNotConfiguredError()

            retry_keys = list(record.failed_keys)
            outcome = await self.push_coordinator.push(tunables, retry_keys)
            if outcome.status != PushStatus.SUCCESS:
                outcome = PushOutcome(
                    status=PushStatus.FAILED,
                    message=outcome.message,
                    failed_keys=outcome.failed_keys,
                )
            metrics.record_push("retry", outcome.status.value)

            await self._store_push_outcome(record, outcome)
            logger.info(
                "push_retried",
                external_auth_id=external_auth_id,
                created_at=created_at,
                retried=len(retry_keys),
                still_failed=len(outcome.failed_keys),
            )
            return outcome

    async def find_record(self, external_auth_id: str, created_at: int) -> DonationRecord | None:
        stmt = select(DonationRecord).where(
            DonationRecord.external_auth_id == external_auth_id,
            DonationRecord.created_ts == created_at,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def history(self, external_auth_id: str) -> list[DonationRecord]:
        """Donations for one identity, newest first."""
        stmt = (
            select(DonationRecord)
            .where(DonationRecord.external_auth_id == external_auth_id)
            .order_by(DonationRecord.created_ts.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self) -> list[DonationRecord]:
        """Every donation, newest first."""
        result = await self.session.execute(
            select(DonationRecord).order_by(DonationRecord.created_at.desc())
        )
        return list(result.scalars().all())

    async def _next_created_ts(self, external_auth_id: str) -> int:
        """Millisecond handle, strictly after the identity's previous record."""
        result = await self.session.execute(
            select(func.max(DonationRecord.created_ts)).where(
                DonationRecord.external_auth_id == external_auth_id
            )
        )
        latest = result.scalar_one_or_none()
        ts = now_ms()
        if latest is not None and ts <= latest:
            ts = latest + 1
        return ts

    async def _create_record(
        self, identity: Identity, keys_count: int, quota_added: int
    ) -> DonationRecord | None:
        try:
            record = DonationRecord(
                external_auth_id=identity.external_auth_id,
                username=identity.username or "",
                keys_count=keys_count,
                total_quota_added=quota_added,
                push_status=PushStatus.PENDING.value,
                push_message="",
                failed_keys=[],
                created_ts=await self._next_created_ts(identity.external_auth_id),
            )
            self.session.add(record)
            await self.session.commit()
            await self.session.refresh(record)
            return record
        except Exception:
            await self.session.rollback()
            logger.error(
                "donation_record_create_failed",
                external_auth_id=identity.external_auth_id,
                keys_count=keys_count,
                quota_added=quota_added,
                exc_info=True,
            )
            return None

    async def _store_push_outcome(self, record: DonationRecord, outcome: PushOutcome) -> None:
        try:
            record.push_status = outcome.status.value
            record.push_message = outcome.message
            record.failed_keys = list(outcome.failed_keys)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.error(
                "donation_push_outcome_persist_failed",
                external_auth_id=record.external_auth_id,
                created_at=record.created_ts,
                push_status=outcome.status.value,
                exc_info=True,
            )

    async def _link_ledger(self, record: DonationRecord, keys: list[str]) -> None:
        try:
            await self.ledger.attach_donation([hash_key(k) for k in keys], record.id)
        except Exception:
            await self.session.rollback()
            logger.error("ledger_link_failed", donation_record_id=record.id, exc_info=True)
