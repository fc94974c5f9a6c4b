"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, date, datetime

from sqlalchemy import (
    ARRAY,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    One row per external identity. bound_account_id = 0 means unbound.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    # Identity from the OAuth directory
    external_auth_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Gateway binding
    username: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    bound_account_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("bound_account_id >= 0", name="ck_users_bound_account_non_negative"),
        Index("idx_users_username", "username"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<User(external_auth_id={self.external_auth_id}, username={self.username}, "
            f"bound_account_id={self.bound_account_id})>"
        )


class ClaimRecord(Base):
    """
    ORM model for claim_records table.

    Immutable. At most one row per identity per calendar date (UTC).
    """

    __tablename__ = "claim_records"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    external_auth_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.external_auth_id", ondelete="CASCADE"),
        nullable=False,
    )
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    quota_added: Mapped[int] = mapped_column(BigInteger, nullable=False)
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("quota_added > 0", name="ck_claim_quota_positive"),
        UniqueConstraint("external_auth_id", "claim_date", name="uq_claim_per_day"),
        Index("idx_claim_records_created_at", "created_at"),
    )


class DonationRecord(Base):
    """
    ORM model for donation_records table.

    keys_count and total_quota_added are fixed at creation; the push_* columns
    and failed_keys change on retry.
    """

    __tablename__ = "donation_records"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    external_auth_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.external_auth_id", ondelete="CASCADE"),
        nullable=False,
    )
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    keys_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_quota_added: Mapped[int] = mapped_column(BigInteger, nullable=False)

    push_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    push_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    failed_keys: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    # Epoch milliseconds; the public handle used to address a record for retry
    created_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "push_status IN ('pending', 'success', 'partial', 'failed')",
            name="ck_donation_push_status",
        ),
        CheckConstraint("keys_count > 0", name="ck_donation_keys_positive"),
        UniqueConstraint("external_auth_id", "created_ts", name="uq_donation_identity_ts"),
        Index("idx_donation_records_created_at", "created_at"),
    )


class LedgerKey(Base):
    """
    ORM model for ledger_keys table.

    Every key ever consumed, keyed by SHA-256 of the key. Rows are permanent
    except for admin deletion.
    """

    __tablename__ = "ledger_keys"

    key_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    key_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_auth_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.external_auth_id", ondelete="CASCADE"),
        nullable=False,
    )
    username: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    donation_record_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("donation_records.id", ondelete="SET NULL"),
        nullable=True,
    )
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_ledger_keys_owner", "owner_auth_id"),
        Index("idx_ledger_keys_created_at", "created_at"),
    )


class AdminConfig(Base):
    """
    ORM model for admin_config table.

    Single row (id = 1) of operator-tunable values.
    """

    __tablename__ = "admin_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    claim_quota: Mapped[int] = mapped_column(BigInteger, nullable=False)
    per_key_quota: Mapped[int] = mapped_column(BigInteger, nullable=False)
    min_quota_threshold: Mapped[int] = mapped_column(BigInteger, nullable=False)
    push_endpoint: Mapped[str] = mapped_column(Text, nullable=False, default="")
    push_auth_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    push_group_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    directory_session_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("id = 1", name="ck_admin_config_single_row"),)
