"""Initial schema: identities, claims, donations, key ledger, admin config.

Revision ID: 2026_10_18_0001
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_18_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("external_auth_id", sa.String(255), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("username", sa.String(255), nullable=False, server_default=""),
        sa.Column("bound_account_id", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "bound_account_id >= 0", name="ck_users_bound_account_non_negative"
        ),
    )
    op.create_index("idx_users_username", "users", ["username"])

    op.create_table(
        "claim_records",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "external_auth_id",
            sa.String(255),
            sa.ForeignKey("users.external_auth_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("quota_added", sa.BigInteger(), nullable=False),
        sa.Column("claim_date", sa.Date(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("quota_added > 0", name="ck_claim_quota_positive"),
        sa.UniqueConstraint("external_auth_id", "claim_date", name="uq_claim_per_day"),
    )
    op.create_index("idx_claim_records_created_at", "claim_records", ["created_at"])

    op.create_table(
        "donation_records",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "external_auth_id",
            sa.String(255),
            sa.ForeignKey("users.external_auth_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("keys_count", sa.Integer(), nullable=False),
        sa.Column("total_quota_added", sa.BigInteger(), nullable=False),
        sa.Column("push_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("push_message", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "failed_keys",
            postgresql.ARRAY(sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("created_ts", sa.BigInteger(), nullable=False),
        sa.CheckConstraint(
            "push_status IN ('pending', 'success', 'partial', 'failed')",
            name="ck_donation_push_status",
        ),
        sa.CheckConstraint("keys_count > 0", name="ck_donation_keys_positive"),
        sa.UniqueConstraint("external_auth_id", "created_ts", name="uq_donation_identity_ts"),
    )
    op.create_index("idx_donation_records_created_at", "donation_records", ["created_at"])

    op.create_table(
        "ledger_keys",
        sa.Column("key_hash", sa.String(64), primary_key=True),
        sa.Column("key_value", sa.Text(), nullable=True),
        sa.Column(
            "owner_auth_id",
            sa.String(255),
            sa.ForeignKey("users.external_auth_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("username", sa.String(255), nullable=False, server_default=""),
        sa.Column(
            "donation_record_id",
            sa.BigInteger(),
            sa.ForeignKey("donation_records.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_ledger_keys_owner", "ledger_keys", ["owner_auth_id"])
    op.create_index("idx_ledger_keys_created_at", "ledger_keys", ["created_at"])

    op.create_table(
        "admin_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("claim_quota", sa.BigInteger(), nullable=False),
        sa.Column("per_key_quota", sa.BigInteger(), nullable=False),
        sa.Column("min_quota_threshold", sa.BigInteger(), nullable=False),
        sa.Column("push_endpoint", sa.Text(), nullable=False, server_default=""),
        sa.Column("push_auth_token", sa.Text(), nullable=False, server_default=""),
        sa.Column("push_group_id", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("directory_session_token", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("id = 1", name="ck_admin_config_single_row"),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("admin_config")
    op.drop_index("idx_ledger_keys_created_at", table_name="ledger_keys")
    op.drop_index("idx_ledger_keys_owner", table_name="ledger_keys")
    op.drop_table("ledger_keys")
    op.drop_index("idx_donation_records_created_at", table_name="donation_records")
    op.drop_table("donation_records")
    op.drop_index("idx_claim_records_created_at", table_name="claim_records")
    op.drop_table("claim_records")
    op.drop_index("idx_users_username", table_name="users")
    op.drop_table("users")
