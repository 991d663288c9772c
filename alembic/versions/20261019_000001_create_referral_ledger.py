"""create referral ledger tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Participants
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("referral_code", sa.String(length=8), nullable=True),
        sa.Column("referrer_id", sa.Integer(), nullable=True),
        sa.Column(
            "referral_chain",
            sa.JSON(),
            nullable=False,
            server_default=sa.text("'[]'"),
        ),
        sa.Column(
            "xp", sa.BigInteger(), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_referral_xp",
            sa.BigInteger(),
            nullable=False,
            server_default="0",
        ),
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
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["referrer_id"], ["users.id"], ondelete="SET NULL"
        ),
        sa.CheckConstraint("xp >= 0", name="check_user_xp_non_negative"),
        sa.CheckConstraint(
            "total_referral_xp >= 0",
            name="check_user_total_referral_xp_non_negative",
        ),
    )
    op.create_index(
        "ix_users_telegram_id", "users", ["telegram_id"], unique=True
    )
    op.create_index("ix_users_username", "users", ["username"])
    op.create_index(
        "ix_users_referral_code", "users", ["referral_code"], unique=True
    )
    op.create_index("ix_users_referrer_id", "users", ["referrer_id"])

    # Referral edges
    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("referrer_id", sa.Integer(), nullable=False),
        sa.Column("referral_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=8), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.String(length=20),
            nullable=False,
            server_default="active",
        ),
        sa.Column(
            "total_rewards_distributed",
            sa.BigInteger(),
            nullable=False,
            server_default="0",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "last_reward_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["referrer_id"], ["users.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["referral_id"], ["users.id"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint(
            "referral_id", "level", name="uq_referral_referral_level"
        ),
        sa.UniqueConstraint(
            "referrer_id", "referral_id", name="uq_referral_referrer_referral"
        ),
        sa.CheckConstraint(
            "level >= 1 AND level <= 3", name="check_referral_level_range"
        ),
        sa.CheckConstraint(
            "referrer_id <> referral_id", name="check_referral_not_self"
        ),
        sa.CheckConstraint(
            "total_rewards_distributed >= 0",
            name="check_referral_rewards_non_negative",
        ),
    )
    op.create_index("ix_referrals_referrer_id", "referrals", ["referrer_id"])
    op.create_index("ix_referrals_referral_id", "referrals", ["referral_id"])
    op.create_index("ix_referrals_level", "referrals", ["level"])
    op.create_index("ix_referrals_status", "referrals", ["status"])
    op.create_index(
        "idx_referral_referrer_created",
        "referrals",
        ["referrer_id", "created_at"],
    )
    op.create_index(
        "idx_referral_code_status", "referrals", ["code", "status"]
    )

    # Reward distribution outbox
    op.create_table(
        "reward_distributions",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column(
            "status",
            sa.String(length=20),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "occurred_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "attempt_count", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "max_retries", sa.Integer(), nullable=False, server_default="5"
        ),
        sa.Column(
            "last_attempt_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "next_retry_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column(
            "total_distributed",
            sa.BigInteger(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
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
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_reward_distributions_user_id", "reward_distributions", ["user_id"]
    )
    op.create_index(
        "ix_reward_distributions_status", "reward_distributions", ["status"]
    )
    op.create_index(
        "ix_reward_distributions_next_retry_at",
        "reward_distributions",
        ["next_retry_at"],
    )
    op.create_index(
        "idx_reward_distribution_status_retry",
        "reward_distributions",
        ["status", "next_retry_at"],
    )

    # Earning audit trail
    op.create_table(
        "referral_earnings",
        sa.Column("id", sa.Integer(), nullable=False, autoincrement=True),
        sa.Column("referral_id", sa.Integer(), nullable=False),
        sa.Column("distribution_id", sa.Integer(), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["referral_id"], ["referrals.id"]),
        sa.ForeignKeyConstraint(
            ["distribution_id"], ["reward_distributions.id"]
        ),
    )
    op.create_index(
        "ix_referral_earnings_referral_id",
        "referral_earnings",
        ["referral_id"],
    )
    op.create_index(
        "ix_referral_earnings_distribution_id",
        "referral_earnings",
        ["distribution_id"],
    )
    op.create_index(
        "idx_referral_earning_referral_created",
        "referral_earnings",
        ["referral_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("referral_earnings")
    op.drop_table("reward_distributions")
    op.drop_table("referrals")
    op.drop_table("users")
