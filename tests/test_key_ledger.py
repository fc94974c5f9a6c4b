"""
Tests for KeyLedger with a mocked session.
"""

import hashlib
from unittest.mock import AsyncMock, MagicMock

import pytest

from quota_bridge.services.key_ledger import KeyLedger, LedgerEntry, LedgerPrefilter, hash_key


def scalars_result(values: list) -> MagicMock:
    result = MagicMock()
    result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=values)))
    return result


@pytest.fixture(autouse=True)
def reset_prefilter():
    LedgerPrefilter.reset()
    yield
    LedgerPrefilter.reset()


class TestHashKey:
    def test_sha256_of_trimmed_key(self):
        assert hash_key("  sk-abc ") == hashlib.sha256(b"sk-abc").hexdigest()
        assert len(hash_key("sk-abc")) == 64


class TestKeyLedger:
    async def test_existing_queries_database(self, db_session):
        db_session.execute = AsyncMock(return_value=scalars_result([hash_key("k1")]))
        ledger = KeyLedger(db_session)

        found = await ledger.existing([hash_key("k1"), hash_key("k2")])

        assert found == {hash_key("k1")}
        db_session.execute.assert_awaited_once()

    async def test_exists_single_hash(self, db_session):
        db_session.execute = AsyncMock(return_value=scalars_result([]))
        assert await KeyLedger(db_session).exists(hash_key("k1")) is False

    async def test_empty_lookups_skip_database(self, db_session):
        ledger = KeyLedger(db_session)
        assert await ledger.existing([]) == set()
        assert await ledger.insert_if_absent([]) == 0
        assert await ledger.delete([]) == 0
        db_session.execute.assert_not_awaited()

    async def test_insert_reports_only_new_rows(self, db_session):
        entries = [
            LedgerEntry(key="k1", owner_auth_id="10086", username="alice"),
            LedgerEntry(key="k2", owner_auth_id="10086", username="alice"),
        ]
        # k2 hit the primary key conflict and was skipped
        db_session.execute = AsyncMock(return_value=scalars_result([hash_key("k1")]))

        inserted = await KeyLedger(db_session).insert_if_absent(entries)

        assert inserted == 1
        db_session.commit.assert_awaited_once()

    async def test_prefilter_miss_short_circuits(self, db_session):
        db_session.execute = AsyncMock(return_value=scalars_result([hash_key("known")]))
        ledger = KeyLedger(db_session, use_prefilter=True)

        assert await ledger.existing([hash_key("unknown")]) == set()
        # Only the initial load touched the database
        assert db_session.execute.await_count == 1

    async def test_prefilter_hit_is_confirmed(self, db_session):
        db_session.execute = AsyncMock(
            side_effect=[scalars_result([hash_key("known")]), scalars_result([])]
        )
        ledger = KeyLedger(db_session, use_prefilter=True)

        # The prefilter says maybe; the table says no (deleted meanwhile)
        assert await ledger.existing([hash_key("known")]) == set()
        assert db_session.execute.await_count == 2

    async def test_delete_drops_hashes_from_prefilter(self, db_session):
        db_session.execute = AsyncMock(
            side_effect=[scalars_result([hash_key("k1")]), scalars_result([hash_key("k1")])]
        )
        ledger = KeyLedger(db_session, use_prefilter=True)
        await LedgerPrefilter.ensure_loaded(db_session)
        assert LedgerPrefilter.might_contain(hash_key("k1"))

        deleted = await ledger.delete([hash_key("k1")])

        assert deleted == 1
        assert not LedgerPrefilter.might_contain(hash_key("k1"))
