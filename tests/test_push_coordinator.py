"""
Tests for PushCoordinator outcome classification.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from quota_bridge.exceptions import ExternalRejectionError, ExternalTransportError
from quota_bridge.models.api import PushStatus
from quota_bridge.models.domain import PushOutcome
from quota_bridge.services.key_pool import KeyPoolClient, PoolResponse
from quota_bridge.services.push_coordinator import PUSH_NOT_CONFIGURED, PushCoordinator

from tests.fakes import make_tunables

KEYS = ["sk-one", "sk-two", "sk-three"]


def coordinator(**push_kwargs) -> tuple[PushCoordinator, MagicMock]:
    client = MagicMock(spec=KeyPoolClient)
    client.push = AsyncMock(**push_kwargs)
    return PushCoordinator(client), client


class TestPushCoordinator:
    @pytest.mark.parametrize(
        "overrides", [{"push_auth_token": ""}, {"push_endpoint": ""}]
    )
    async def test_missing_credentials_fail_whole_batch(self, overrides):
        push, client = coordinator()

        outcome = await push.push(make_tunables(**overrides), KEYS)

        assert outcome.status == PushStatus.FAILED
        assert outcome.message == PUSH_NOT_CONFIGURED
        assert outcome.failed_keys == tuple(KEYS)
        client.push.assert_not_called()

    async def test_success_without_split(self):
        push, client = coordinator(return_value=PoolResponse(message="ok", failed_keys=None))

        outcome = await push.push(make_tunables(), KEYS)

        assert outcome.status == PushStatus.SUCCESS
        assert outcome.failed_keys == ()
        client.push.assert_awaited_once_with(
            "https://pool.example.test/api/keys/add-async", "pool-token", 26, KEYS
        )

    async def test_reported_subset_is_partial(self):
        push, _ = coordinator(return_value=PoolResponse(message="", failed_keys=("sk-two",)))

        outcome = await push.push(make_tunables(), KEYS)

        assert outcome.status == PushStatus.PARTIAL
        assert outcome.failed_keys == ("sk-two",)

    async def test_every_key_in_reported_split_is_partial(self):
        push, _ = coordinator(return_value=PoolResponse(message="full", failed_keys=tuple(KEYS)))

        outcome = await push.push(make_tunables(), KEYS)

        assert outcome.status == PushStatus.PARTIAL
        assert outcome.failed_keys == tuple(KEYS)

    @pytest.mark.parametrize(
        "error",
        [ExternalTransportError("key_pool", "reset"), ExternalRejectionError("key_pool", "HTTP 500")],
    )
    async def test_call_failure_fails_whole_batch(self, error):
        push, _ = coordinator(side_effect=error)

        outcome = await push.push(make_tunables(), KEYS)

        assert outcome.status == PushStatus.FAILED
        assert outcome.failed_keys == tuple(KEYS)
        assert outcome.message == str(error)


class TestPushOutcome:
    def test_success_cannot_carry_failed_keys(self):
        with pytest.raises(ValueError):
            PushOutcome(status=PushStatus.SUCCESS, message="", failed_keys=("k",))

    def test_outcome_is_never_pending(self):
        with pytest.raises(ValueError):
            PushOutcome(status=PushStatus.PENDING, message="")
