"""guard ledger history against rewrites

Revision ID: 0002_ledger_immutability
Revises: 0001_credits
Create Date: 2026-10-19

Rows in ledger_transactions are facts about money that already moved, so the
table refuses UPDATE, DELETE and TRUNCATE, and rejects zero-amount postings or
unknown kinds at insert time.
"""

from alembic import op


revision = "0002_ledger_immutability"
down_revision = "0001_credits"
branch_labels = None
depends_on = None

KINDS = ("purchase", "usage", "refund", "free_grant")


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.create_check_constraint("ck_ledger_transactions_nonzero_amount", "ledger_transactions", "amount <> 0")
    op.create_check_constraint(
        "ck_ledger_transactions_kind",
        "ledger_transactions",
        "kind IN (" + ", ".join(f"'{kind}'" for kind in KINDS) + ")",
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION ledger_transactions_reject_rewrite()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_LEVEL = 'STATEMENT' THEN
                RAISE EXCEPTION 'credit history cannot be truncated'
                    USING ERRCODE = 'restrict_violation';
            END IF;
            RAISE EXCEPTION 'credit history row % for user % is final (% refused)', OLD.id, OLD.user_id, TG_OP
                USING ERRCODE = 'restrict_violation',
                      HINT = 'post a compensating refund or usage row instead';
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER ledger_transactions_no_rewrite
        BEFORE UPDATE OR DELETE ON ledger_transactions
        FOR EACH ROW
        EXECUTE FUNCTION ledger_transactions_reject_rewrite();
        """
    )
    op.execute(
        """
        CREATE TRIGGER ledger_transactions_no_truncate
        BEFORE TRUNCATE ON ledger_transactions
        FOR EACH STATEMENT
        EXECUTE FUNCTION ledger_transactions_reject_rewrite();
        """
    )


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("DROP TRIGGER IF EXISTS ledger_transactions_no_truncate ON ledger_transactions;")
    op.execute("DROP TRIGGER IF EXISTS ledger_transactions_no_rewrite ON ledger_transactions;")
    op.execute("DROP FUNCTION IF EXISTS ledger_transactions_reject_rewrite();")
    op.drop_constraint("ck_ledger_transactions_kind", "ledger_transactions", type_="check")
    op.drop_constraint("ck_ledger_transactions_nonzero_amount", "ledger_transactions", type_="check")
