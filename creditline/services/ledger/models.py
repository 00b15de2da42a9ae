"""Ledger database models for per-user balances and the append-only transaction log."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from creditline.common.db import Base

CREDIT_AMOUNT = Numeric(12, 2)


class TransactionKind(str, Enum):
    """Closed set of reasons a balance can change."""

    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"
    FREE_GRANT = "free_grant"


class AccountBalance(Base):
    """Current balance snapshot for one user.

    `balance` always equals the sum of the user's `LedgerTransaction.amount`
    rows; it only changes in the same DB transaction that appends one.
    """

    __tablename__ = "account_balances"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    balance: Mapped[Decimal] = mapped_column(CREDIT_AMOUNT, nullable=False, default=Decimal("0"))
    last_free_grant_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pending_conversion_value: Mapped[Decimal | None] = mapped_column(CREDIT_AMOUNT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class LedgerTransaction(Base):
    """Immutable signed balance change."""

    __tablename__ = "ledger_transactions"
    __table_args__ = (
        # A processor payment can be credited to a user at most once.
        Index(
            "uq_ledger_purchase_payment_ref",
            "user_id",
            "external_payment_ref",
            unique=True,
            postgresql_where=text("kind = 'purchase'"),
            sqlite_where=text("kind = 'purchase'"),
        ),
        Index("ix_ledger_transactions_user_created", "user_id", "created_at"),
        CheckConstraint("amount <> 0", name="ck_ledger_transactions_nonzero_amount"),
        CheckConstraint(
            "kind IN (" + ", ".join(f"'{kind.value}'" for kind in TransactionKind) + ")",
            name="ck_ledger_transactions_kind",
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(ForeignKey("account_balances.user_id"), index=True)
    amount: Mapped[Decimal] = mapped_column(CREDIT_AMOUNT, nullable=False)
    kind: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str] = mapped_column(String, default="")
    external_payment_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    balance_after: Mapped[Decimal] = mapped_column(CREDIT_AMOUNT, nullable=False)
    # Set client-side: SQLite's CURRENT_TIMESTAMP only has second resolution.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
