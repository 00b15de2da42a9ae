"""initial credits schema

Revision ID: 0001_credits
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_credits"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "account_balances",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("last_free_grant_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pending_conversion_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("external_payment_ref", sa.String(), nullable=True),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["account_balances.user_id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ledger_transactions_user_id", "ledger_transactions", ["user_id"])
    op.create_index("ix_ledger_transactions_kind", "ledger_transactions", ["kind"])
    op.create_index("ix_ledger_transactions_user_created", "ledger_transactions", ["user_id", "created_at"])
    op.create_index(
        "uq_ledger_purchase_payment_ref",
        "ledger_transactions",
        ["user_id", "external_payment_ref"],
        unique=True,
        postgresql_where=sa.text("kind = 'purchase'"),
    )

    op.create_table(
        "processing_log",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", "event_type", name="uq_processing_log_event"),
    )
    op.create_index("ix_processing_log_event_id", "processing_log", ["event_id"])
    op.create_index("ix_processing_log_event_type", "processing_log", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_processing_log_event_type", table_name="processing_log")
    op.drop_index("ix_processing_log_event_id", table_name="processing_log")
    op.drop_table("processing_log")
    op.drop_index("uq_ledger_purchase_payment_ref", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_user_created", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_kind", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_user_id", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_table("account_balances")
