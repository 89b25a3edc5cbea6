"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates tables for:
- app_configuration: Admin-edited configuration documents (referral settings)
- user_accounts: Customer profiles with referral code and wallet balance
- wallet_transactions: Wallet ledger
- referrals: Referral ledger
- referral_signals: Email/IP/device values claimed by bonus-granting referrals
- notifications: In-app notifications
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    op.create_table(
        "app_configuration",
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("value_json", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "user_accounts",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("mobile_number", sa.String(32), nullable=True),
        sa.Column("referral_code", sa.String(16), nullable=False),
        sa.Column("referred_by_id", sa.String(128), nullable=True),
        sa.Column("wallet_balance", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referred_by_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("wallet_balance >= 0", name="ck_user_accounts_wallet_non_negative"),
    )
    op.create_index("ix_user_accounts_email", "user_accounts", ["email"], unique=False)
    op.create_index("ix_user_accounts_referral_code", "user_accounts", ["referral_code"], unique=True)
    op.create_index("ix_user_accounts_referred_by_id", "user_accounts", ["referred_by_id"], unique=False)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("balance_after", sa.Float(), nullable=False),
        sa.Column("operation", sa.String(50), nullable=False),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"], unique=False)
    op.create_index("ix_wallet_transactions_reference_id", "wallet_transactions", ["reference_id"], unique=False)

    op.create_table(
        "referrals",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("referrer_id", sa.String(128), nullable=False),
        sa.Column("referred_user_id", sa.String(128), nullable=False),
        sa.Column("referred_user_email", sa.String(255), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("device_id", sa.String(32), nullable=True),
        sa.Column(
            "status",
            sa.Enum("PENDING", "COMPLETED", "FAILED", name="referralstatus"),
            nullable=False,
        ),
        sa.Column("referrer_bonus", sa.Float(), nullable=False),
        sa.Column("referred_bonus", sa.Float(), nullable=False),
        sa.Column("booking_id", sa.String(64), nullable=True),
        sa.Column("failure_reason", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referrer_id"], ["user_accounts.id"]),
        sa.ForeignKeyConstraint(["referred_user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("referred_user_id"),
        sa.CheckConstraint("referrer_id <> referred_user_id", name="ck_referrals_no_self_referral"),
    )
    op.create_index("ix_referrals_referrer_id", "referrals", ["referrer_id"], unique=False)
    op.create_index("ix_referrals_referred_user_email", "referrals", ["referred_user_email"], unique=False)
    op.create_index("ix_referrals_ip_address", "referrals", ["ip_address"], unique=False)
    op.create_index("ix_referrals_device_id", "referrals", ["device_id"], unique=False)
    op.create_index("ix_referrals_status", "referrals", ["status"], unique=False)

    # One referral per email, IP or device value
    op.create_table(
        "referral_signals",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("referral_id", sa.String(32), nullable=False),
        sa.Column("kind", sa.Enum("EMAIL", "IP", "DEVICE", name="signalkind"), nullable=False),
        sa.Column("value", sa.String(255), nullable=False),
        sa.ForeignKeyConstraint(["referral_id"], ["referrals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "value", name="uq_referral_signals_kind_value"),
    )
    op.create_index("ix_referral_signals_referral_id", "referral_signals", ["referral_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.String(1000), nullable=False),
        sa.Column(
            "type",
            sa.Enum("INFO", "SUCCESS", "WARNING", name="notificationtype"),
            nullable=False,
        ),
        sa.Column("href", sa.String(255), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_referral_signals_referral_id", table_name="referral_signals")
    op.drop_table("referral_signals")

    op.drop_index("ix_referrals_status", table_name="referrals")
    op.drop_index("ix_referrals_device_id", table_name="referrals")
    op.drop_index("ix_referrals_ip_address", table_name="referrals")
    op.drop_index("ix_referrals_referred_user_email", table_name="referrals")
    op.drop_index("ix_referrals_referrer_id", table_name="referrals")
    op.drop_table("referrals")

    op.drop_index("ix_wallet_transactions_reference_id", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_user_id", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")

    op.drop_index("ix_user_accounts_referred_by_id", table_name="user_accounts")
    op.drop_index("ix_user_accounts_referral_code", table_name="user_accounts")
    op.drop_index("ix_user_accounts_email", table_name="user_accounts")
    op.drop_table("user_accounts")

    op.drop_table("app_configuration")

    sa.Enum(name="notificationtype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="signalkind").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="referralstatus").drop(op.get_bind(), checkfirst=True)
