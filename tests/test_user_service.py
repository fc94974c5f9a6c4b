"""
Tests for UserService: identity creation, binding, and the quota view.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError

from quota_bridge.config import settings
from quota_bridge.db.models import User
from quota_bridge.exceptions import NotBoundError, OwnershipMismatchError, UserNotFoundError
from quota_bridge.services.keyed_lock import KeyedLocks
from quota_bridge.services.user import UserService
from tests.fakes import FakeGateway, make_snapshot


def existing_user(db_session, user: User) -> None:
    db_session.execute.return_value.scalar_one_or_none.return_value = user


class TestGetOrCreateIdentity:
    async def test_creates_unbound_identity_on_first_sight(self, db_session, gateway):
        identity = await UserService(db_session, gateway).get_or_create_identity(
            "10086", display_name="Alice"
        )

        assert identity.external_auth_id == "10086"
        assert not identity.is_bound
        created = db_session.add.call_args[0][0]
        assert created.external_auth_id == "10086"
        assert created.display_name == "Alice"
        db_session.commit.assert_awaited_once()

    async def test_returns_existing_identity(self, db_session, gateway):
        existing_user(
            db_session, User(external_auth_id="10086", username="alice", bound_account_id=42)
        )

        identity = await UserService(db_session, gateway).get_or_create_identity("10086")

        assert identity.is_bound
        assert identity.bound_account_id == 42
        db_session.add.assert_not_called()

    async def test_concurrent_create_reloads(self, db_session, gateway):
        winner = User(external_auth_id="10086", username="", bound_account_id=0)
        db_session.execute.return_value.scalar_one_or_none.side_effect = [None, winner]
        db_session.flush = AsyncMock(side_effect=IntegrityError("insert", {}, Exception("dup")))

        identity = await UserService(db_session, gateway).get_or_create_identity("10086")

        assert identity.external_auth_id == "10086"
        db_session.rollback.assert_awaited_once()


class TestBind:
    async def test_first_bind_credits_bonus(
        self, db_session, gateway, unbound_identity, patch_tunables
    ):
        result = await UserService(db_session, gateway).bind(unbound_identity, "alice")

        assert result.first_bind
        assert result.bonus_quota == settings.first_bind_bonus
        assert result.identity.bound_account_id == 42
        assert result.identity.username == "alice"
        assert gateway.quota_of(42) == 5_000_000 + settings.first_bind_bonus

    async def test_rebind_has_no_bonus(self, db_session, gateway, bound_identity, patch_tunables):
        existing_user(
            db_session, User(external_auth_id="10086", username="alice", bound_account_id=42)
        )

        result = await UserService(db_session, gateway).bind(bound_identity, "alice")

        assert not result.first_bind
        assert result.bonus_quota == 0
        assert result.message == "rebound"
        assert gateway.updates == []

    async def test_bonus_failure_keeps_binding(
        self, db_session, gateway, unbound_identity, patch_tunables
    ):
        gateway.reject_message = "quota locked"

        result = await UserService(db_session, gateway).bind(unbound_identity, "alice")

        assert result.first_bind
        assert result.bonus_quota == 0
        assert result.message == "bound, bonus credit failed"
        db_session.commit.assert_awaited_once()

    async def test_account_owned_by_other_identity(
        self, db_session, gateway, unbound_identity, patch_tunables
    ):
        with pytest.raises(OwnershipMismatchError):
            await UserService(db_session, gateway).bind(unbound_identity, "alicia")
        db_session.commit.assert_not_awaited()

    async def test_unknown_username(self, db_session, gateway, unbound_identity, patch_tunables):
        with pytest.raises(UserNotFoundError):
            await UserService(db_session, gateway).bind(unbound_identity, "bob")


    async def test_concurrent_first_binds_pay_one_bonus(
        self, db_session, unbound_identity, patch_tunables
    ):
        gateway = FakeGateway([make_snapshot()], delay=0.01)
        existing_user(
            db_session, User(external_auth_id="10086", username="", bound_account_id=0)
        )
        locks = KeyedLocks()

        results = await asyncio.gather(
            UserService(db_session, gateway, locks=locks).bind(unbound_identity, "alice"),
            UserService(db_session, gateway, locks=locks).bind(unbound_identity, "alice"),
        )

        assert sorted(r.first_bind for r in results) == [False, True]
        assert sum(r.bonus_quota for r in results) == settings.first_bind_bonus
        assert gateway.updates == [(42, 5_000_000 + settings.first_bind_bonus)]


class TestQuotaView:
    async def test_low_quota_can_claim(self, db_session, gateway, bound_identity, patch_tunables):
        view = await UserService(db_session, gateway).quota_view(bound_identity)

        assert view.quota == 5_000_000
        assert view.used_quota == 1_000_000
        assert view.total == 6_000_000
        assert not view.claimed_today
        assert view.can_claim

    async def test_high_quota_cannot_claim(self, db_session, bound_identity, patch_tunables):
        gateway = FakeGateway([make_snapshot(quota=50_000_000)])

        view = await UserService(db_session, gateway).quota_view(bound_identity)

        assert not view.can_claim

    async def test_admin_rebound_account_is_viewable(
        self, db_session, bound_identity, patch_tunables
    ):
        gateway = FakeGateway([make_snapshot(external_auth_id="777")])

        view = await UserService(db_session, gateway).quota_view(bound_identity)

        assert view.username == "alice"

    async def test_unbound(self, db_session, gateway, unbound_identity, patch_tunables):
        with pytest.raises(NotBoundError):
            await UserService(db_session, gateway).quota_view(unbound_identity)
