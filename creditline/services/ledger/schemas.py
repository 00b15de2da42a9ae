"""API request/response schemas for ledger endpoints."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from creditline.services.ledger.models import TransactionKind


class AccountSummary(BaseModel):
    """Balance view returned after replenishment has run."""

    user_id: str
    balance: Decimal
    pending_conversion_value: Decimal | None = None
    has_pending_conversion: bool = False
    last_free_grant_at: datetime | None = None


class TransactionView(BaseModel):
    """One ledger row as exposed by the history endpoint."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: Decimal
    kind: str
    description: str
    external_payment_ref: str | None = None
    balance_after: Decimal
    created_at: datetime


class TransactionPage(BaseModel):
    """Newest-first page of transactions."""

    user_id: str
    limit: int
    offset: int
    transactions: list[TransactionView]


class DebitRequest(BaseModel):
    """Usage charge submitted by application code."""

    user_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    description: str = "Generation usage"


class CreditRequest(BaseModel):
    """Operator or system credit (refunds, manual fixes for lost webhooks)."""

    user_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    kind: TransactionKind = TransactionKind.REFUND
    description: str = Field(min_length=1)
    external_ref: str | None = None


class BalanceResponse(BaseModel):
    """Balance after a mutation."""

    user_id: str
    balance: Decimal
