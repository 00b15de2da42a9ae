"""add hot-path indexes for processing log reads and pruning

Revision ID: 0003_processing_log_indexes
Revises: 0002_ledger_immutability
Create Date: 2026-10-19
"""

from alembic import op


revision = "0003_processing_log_indexes"
down_revision = "0002_ledger_immutability"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ix_processing_log_user_created",
        "processing_log",
        ["user_id", "created_at"],
    )
    op.create_index(
        "ix_processing_log_created_at",
        "processing_log",
        ["created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_processing_log_created_at", table_name="processing_log")
    op.drop_index("ix_processing_log_user_created", table_name="processing_log")
