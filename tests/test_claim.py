"""
Tests for ClaimGate (daily free grant).
"""

import asyncio
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from quota_bridge.db.models import ClaimRecord
from quota_bridge.exceptions import (
    AboveThresholdError,
    AlreadyClaimedTodayError,
    ExternalRejectionError,
    NotBoundError,
)
from quota_bridge.services.claim import ClaimGate
from quota_bridge.services.keyed_lock import KeyedLocks
from tests.fakes import FakeGateway, make_snapshot


@pytest.fixture
def gate(db_session, gateway) -> ClaimGate:
    return ClaimGate(db_session, gateway, locks=KeyedLocks())


class TestClaimDaily:
    async def test_grants_claim_quota(self, gate, db_session, gateway, bound_identity, patch_tunables):
        result = await gate.claim_daily(bound_identity)

        assert result.quota_added == 20_000_000
        assert result.quota_after == 25_000_000
        assert gateway.quota_of(42) == 25_000_000

        record = db_session.add.call_args[0][0]
        assert isinstance(record, ClaimRecord)
        assert record.external_auth_id == "10086"
        assert record.quota_added == 20_000_000
        assert record.claim_date == result.claim_date
        db_session.commit.assert_awaited_once()

    async def test_unbound_identity(self, gate, unbound_identity, patch_tunables):
        with pytest.raises(NotBoundError):
            await gate.claim_daily(unbound_identity)

    async def test_second_claim_same_day_rejected_regardless_of_quota(
        self, db_session, bound_identity, patch_tunables
    ):
        gateway = FakeGateway([make_snapshot(quota=0)])
        gate = ClaimGate(db_session, gateway, locks=KeyedLocks())

        with patch.object(ClaimGate, "has_claimed", AsyncMock(return_value=True)):
            with pytest.raises(AlreadyClaimedTodayError) as exc_info:
                await gate.claim_daily(bound_identity)

        assert isinstance(exc_info.value.claim_date, date)
        assert gateway.updates == []
        assert gateway.search_calls == []

    async def test_quota_at_threshold_is_rejected(self, db_session, bound_identity, patch_tunables):
        gateway = FakeGateway([make_snapshot(quota=10_000_000)])
        gate = ClaimGate(db_session, gateway, locks=KeyedLocks())

        with pytest.raises(AboveThresholdError) as exc_info:
            await gate.claim_daily(bound_identity)

        assert exc_info.value.threshold == 10_000_000
        assert gateway.updates == []
        db_session.add.assert_not_called()

    async def test_admin_rebound_account_can_still_claim(
        self, db_session, bound_identity, patch_tunables
    ):
        # Directory links the account to someone else; the stored binding wins
        gateway = FakeGateway([make_snapshot(external_auth_id="777")])
        gate = ClaimGate(db_session, gateway, locks=KeyedLocks())

        result = await gate.claim_daily(bound_identity)

        assert result.quota_added == 20_000_000
        assert gateway.updates == [(42, 25_000_000)]

    async def test_stored_username_now_on_other_account(
        self, db_session, bound_identity, patch_tunables
    ):
        gateway = FakeGateway([make_snapshot(account_id=99)])
        gate = ClaimGate(db_session, gateway, locks=KeyedLocks())

        with pytest.raises(ExternalRejectionError):
            await gate.claim_daily(bound_identity)
        assert gateway.updates == []

    async def test_record_failure_after_credit_still_reports_success(
        self, gate, db_session, gateway, bound_identity, patch_tunables
    ):
        db_session.commit = AsyncMock(side_effect=SQLAlchemyError("connection lost"))

        result = await gate.claim_daily(bound_identity)

        assert result.quota_added == 20_000_000
        assert gateway.quota_of(42) == 25_000_000
        db_session.rollback.assert_awaited_once()

    async def test_live_quota_is_read_on_every_claim(
        self, gate, gateway, bound_identity, patch_tunables
    ):
        await gate.claim_daily(bound_identity)
        # One lookup for the threshold check, one inside the credit
        assert len(gateway.search_calls) == 2


class TestConcurrentClaims:
    async def test_same_identity_is_granted_once(self, db_session, bound_identity, patch_tunables):
        gateway = FakeGateway([make_snapshot(quota=0)], delay=0.01)
        locks = KeyedLocks()
        stored: list[ClaimRecord] = []
        db_session.add.side_effect = stored.append

        async def has_claimed(self, external_auth_id, claim_date):
            return any(
                r.external_auth_id == external_auth_id and r.claim_date == claim_date
                for r in stored
            )

        with patch.object(ClaimGate, "has_claimed", has_claimed):
            results = await asyncio.gather(
                ClaimGate(db_session, gateway, locks=locks).claim_daily(bound_identity),
                ClaimGate(db_session, gateway, locks=locks).claim_daily(bound_identity),
                return_exceptions=True,
            )

        granted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, AlreadyClaimedTodayError)]
        assert len(granted) == 1
        assert len(rejected) == 1
        assert gateway.updates == [(42, 20_000_000)]
        assert len(stored) == 1


class TestHistory:
    async def test_history_returns_rows(self, gate, db_session):
        row = ClaimRecord(
            external_auth_id="10086", username="alice", quota_added=1, claim_date=date(2026, 1, 1)
        )
        db_session.execute.return_value.scalars.return_value.all.return_value = [row]

        assert await gate.history("10086") == [row]
