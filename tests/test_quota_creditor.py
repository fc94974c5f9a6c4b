"""
Tests for QuotaCreditor: read-modify-write credits serialized per account.
"""

import asyncio

import pytest

from quota_bridge.exceptions import ExternalRejectionError, ExternalTransportError
from quota_bridge.services.keyed_lock import KeyedLocks
from quota_bridge.services.quota_creditor import QuotaCreditor
from quota_bridge.services.user_resolver import UserResolver
from tests.fakes import FakeGateway, make_snapshot


def creditor_for(gateway: FakeGateway, locks: KeyedLocks | None = None) -> QuotaCreditor:
    return QuotaCreditor(UserResolver(gateway, "token"), locks=locks or KeyedLocks())


class TestQuotaCreditor:
    async def test_sets_fresh_quota_plus_amount(self, gateway):
        result = await creditor_for(gateway).credit(42, "alice", 1_000, flow="claim")

        assert result.quota_before == 5_000_000
        assert result.quota_after == 5_001_000
        assert gateway.updates == [(42, 5_001_000)]
        assert gateway.quota_of(42) == 5_001_000

    async def test_concurrent_credits_on_one_account_never_lose_updates(self):
        gateway = FakeGateway([make_snapshot(quota=0)], delay=0.005)
        creditor = creditor_for(gateway)

        await asyncio.gather(
            *(creditor.credit(42, "alice", 100, flow="donation") for _ in range(10))
        )

        assert gateway.quota_of(42) == 1_000
        assert gateway.max_in_flight_updates == 1

    async def test_separate_creditors_share_the_process_lock(self):
        gateway = FakeGateway([make_snapshot(quota=0)], delay=0.005)
        shared = KeyedLocks()

        await asyncio.gather(
            creditor_for(gateway, shared).credit(42, "alice", 5, flow="claim"),
            creditor_for(gateway, shared).credit(42, "alice", 7, flow="donation"),
        )

        assert gateway.quota_of(42) == 12

    async def test_rejection_propagates(self, gateway):
        gateway.reject_message = "user disabled"

        with pytest.raises(ExternalRejectionError, match="user disabled"):
            await creditor_for(gateway).credit(42, "alice", 10, flow="claim")
        assert gateway.quota_of(42) == 5_000_000

    async def test_transport_error_is_not_retried(self, gateway):
        gateway.transport_failure = True

        with pytest.raises(ExternalTransportError):
            await creditor_for(gateway).credit(42, "alice", 10, flow="claim")
        # Single attempt only
        assert len(gateway.search_calls) == 1

    async def test_username_moved_to_other_account(self, gateway):
        with pytest.raises(ExternalRejectionError, match="now maps"):
            await creditor_for(gateway).credit(99, "alice", 10, flow="claim")
        assert gateway.updates == []

    async def test_amount_must_be_positive(self, gateway):
        with pytest.raises(ValueError):
            await creditor_for(gateway).credit(42, "alice", 0, flow="claim")

    async def test_lock_released_after_failure(self, gateway):
        locks = KeyedLocks()
        gateway.transport_failure = True
        with pytest.raises(ExternalTransportError):
            await creditor_for(gateway, locks).credit(42, "alice", 10, flow="claim")

        assert not locks.locked(42)
        assert len(locks) == 0
