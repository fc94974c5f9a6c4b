"""
Key Ledger - Durable record of every donated key ever consumed.

Keys are addressed by the SHA-256 hex digest of their trimmed value.
insert_if_absent relies on the primary-key constraint, so concurrent
inserts of the same key resolve to exactly one row.

Optional in-process prefilter: a hash set loaded from the table. A miss
short-circuits the database lookup; a hit is always confirmed against the
table. Only safe with a single application process, so it is disabled
unless ledger_prefilter_enabled is set.
"""

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass
from typing import ClassVar

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from quota_bridge.db.models import LedgerKey

logger = get_logger(__name__)


def hash_key(key: str) -> str:
    """SHA-256 hex digest of a trimmed key."""
    return hashlib.sha256(key.strip().encode()).hexdigest()


@dataclass(frozen=True)
class LedgerEntry:
    """A key about to be recorded as consumed."""

    key: str
    owner_auth_id: str
    username: str

    @property
    def key_hash(self) -> str:
        return hash_key(self.key)


class LedgerPrefilter:
    """Process-wide set of ledger hashes. Membership is advisory only."""

    _hashes: ClassVar[set[str]] = set()
    _loaded: ClassVar[bool] = False

    @classmethod
    async def ensure_loaded(cls, session: AsyncSession) -> None:
        if cls._loaded:
            return
        result = await session.execute(select(LedgerKey.key_hash))
        cls._hashes = set(result.scalars().all())
        cls._loaded = True
        logger.info("ledger_prefilter_loaded", size=len(cls._hashes))

    @classmethod
    def might_contain(cls, key_hash: str) -> bool:
        return key_hash in cls._hashes

    @classmethod
    def add(cls, hashes: Iterable[str]) -> None:
        if cls._loaded:
            cls._hashes.update(hashes)

    @classmethod
    def discard(cls, hashes: Iterable[str]) -> None:
        cls._hashes.difference_update(hashes)

    @classmethod
    def reset(cls) -> None:
        cls._hashes = set()
        cls._loaded = False


class KeyLedger:
    """Existence checks, idempotent insert, and admin deletion."""

    def __init__(self, session: AsyncSession, use_prefilter: bool = False) -> None:
        self.session = session
        self.use_prefilter = use_prefilter

    async def exists(self, key_hash: str) -> bool:
        """Authoritative membership check for one hash."""
        return key_hash in await self.existing([key_hash])

    async def existing(self, key_hashes: Iterable[str]) -> set[str]:
        """Return the subset of key_hashes already in the ledger."""
        candidates = list(dict.fromkeys(key_hashes))
        if not candidates:
            return set()

        if self.use_prefilter:
            await LedgerPrefilter.ensure_loaded(self.session)
            # Misses are conclusive, hits go to the table
            candidates = [h for h in candidates if LedgerPrefilter.might_contain(h)]
            if not candidates:
                return set()

        result = await self.session.execute(
            select(LedgerKey.key_hash).where(LedgerKey.key_hash.in_(candidates))
        )
        return set(result.scalars().all())

    async def insert_if_absent(self, entries: list[LedgerEntry]) -> int:
        """
        Record entries as consumed, skipping hashes already present.

        Returns:
            Number of rows actually inserted
        """
        if not entries:
            return 0

        rows = {
            entry.key_hash: {
                "key_hash": entry.key_hash,
                "key_value": entry.key.strip(),
                "owner_auth_id": entry.owner_auth_id,
                "username": entry.username,
                "used": True,
            }
            for entry in entries
        }
        stmt = (
            pg_insert(LedgerKey)
            .values(list(rows.values()))
            .on_conflict_do_nothing(index_elements=[LedgerKey.key_hash])
            .returning(LedgerKey.key_hash)
        )
        result = await self.session.execute(stmt)
        inserted = list(result.scalars().all())
        await self.session.commit()

        if self.use_prefilter:
            LedgerPrefilter.add(rows.keys())

        skipped = len(rows) - len(inserted)
        if skipped:
            logger.warning("ledger_insert_conflicts", inserted=len(inserted), skipped=skipped)
        logger.info("ledger_keys_inserted", count=len(inserted))
        return len(inserted)

    async def attach_donation(self, key_hashes: list[str], donation_record_id: int) -> None:
        """Link ledger rows to the donation record that consumed them."""
        if not key_hashes:
            return
        await self.session.execute(
            update(LedgerKey)
            .where(LedgerKey.key_hash.in_(key_hashes))
            .values(donation_record_id=donation_record_id)
        )
        await self.session.commit()

    async def delete(self, key_hashes: list[str]) -> int:
        """Admin purge. Returns the number of rows removed."""
        if not key_hashes:
            return 0
        result = await self.session.execute(
            delete(LedgerKey)
            .where(LedgerKey.key_hash.in_(key_hashes))
            .returning(LedgerKey.key_hash)
        )
        removed = list(result.scalars().all())
        await self.session.commit()

        LedgerPrefilter.discard(removed)
        logger.info("ledger_keys_deleted", requested=len(key_hashes), deleted=len(removed))
        return len(removed)

    async def delete_for_owner(self, owner_auth_id: str) -> int:
        """Remove every ledger row owned by an identity. Does not commit."""
        result = await self.session.execute(
            delete(LedgerKey)
            .where(LedgerKey.owner_auth_id == owner_auth_id)
            .returning(LedgerKey.key_hash)
        )
        removed = list(result.scalars().all())
        LedgerPrefilter.discard(removed)
        return len(removed)

    async def list_all(self) -> list[LedgerKey]:
        """Every ledger row, newest first."""
        result = await self.session.execute(
            select(LedgerKey).order_by(LedgerKey.created_at.desc())
        )
        return list(result.scalars().all())
