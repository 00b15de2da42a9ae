"""Ledger posting logic: atomic credit/debit under a per-user row lock.

Every balance change appends exactly one `LedgerTransaction` and updates the
`AccountBalance` snapshot in the same DB transaction, so
`balance == sum(amount)` holds at every commit point.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from creditline.common.db import as_utc, dialect_insert
from creditline.common.errors import DuplicatePaymentError, InsufficientFundsError, ValidationError
from creditline.common.logging import logger
from creditline.common.metrics import credits_posted_total, debits_rejected_total, free_grants_total
from creditline.services.ledger.models import AccountBalance, LedgerTransaction, TransactionKind
from creditline.services.ledger.replenisher import FreeCreditReplenisher
from creditline.services.ledger.schemas import AccountSummary

CENT = Decimal("0.01")
MAX_PAGE_SIZE = 200


def to_amount(value) -> Decimal:
    """Coerce user/processor input to a positive two-decimal amount."""

    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError(f"invalid amount: {value!r}", context={"amount": str(value)}) from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("amount must be a positive number", context={"amount": str(value)})
    if amount != amount.quantize(CENT):
        raise ValidationError("amount supports at most two decimal places", context={"amount": str(value)})
    return amount.quantize(CENT)


class LedgerService:
    """Owns account balances and the append-only transaction log."""

    def __init__(
        self,
        session_factory,
        replenisher: FreeCreditReplenisher | None = None,
        service_name: str = "ledger",
    ) -> None:
        self.session_factory = session_factory
        self.replenisher = replenisher or FreeCreditReplenisher.from_settings()
        self.service_name = service_name

    def _upsert_account(self, db, user_id: str) -> None:
        db.execute(
            dialect_insert(db, AccountBalance.__table__)
            .values(user_id=user_id, balance=Decimal("0"))
            .on_conflict_do_nothing(index_elements=["user_id"])
        )

    def _lock_account(self, db, user_id: str) -> AccountBalance:
        """Create the account if needed and take its row lock for this transaction.

        Every mutation for a user goes through here first, which serializes
        check-then-act sequences per user while leaving other users unblocked.
        """

        self._upsert_account(db, user_id)
        return db.execute(
            select(AccountBalance)
            .where(AccountBalance.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

    def _post(
        self,
        db,
        account: AccountBalance,
        amount: Decimal,
        kind: TransactionKind,
        description: str,
        external_ref: str | None = None,
    ) -> LedgerTransaction:
        """Append one transaction and move the balance snapshot with it."""

        new_balance = (account.balance + amount).quantize(CENT)
        account.balance = new_balance
        entry = LedgerTransaction(
            user_id=account.user_id,
            amount=amount,
            kind=kind.value,
            description=description,
            external_payment_ref=external_ref,
            balance_after=new_balance,
        )
        db.add(entry)
        return entry

    def _replenish(self, db, account: AccountBalance, now: datetime) -> LedgerTransaction | None:
        grant = self.replenisher.grant_due(account.balance, account.last_free_grant_at, now)
        if grant <= 0:
            return None
        entry = self._post(db, account, grant.quantize(CENT), TransactionKind.FREE_GRANT, "Free credit grant")
        account.last_free_grant_at = now
        return entry

    def ensure_account(self, user_id: str) -> None:
        """Idempotently create a zero-balance account."""

        with self.session_factory() as db:
            self._upsert_account(db, user_id)
            db.commit()

    def get_account_summary(self, user_id: str) -> AccountSummary:
        """Run the free-grant policy, then return the current account view."""

        now = self.replenisher.clock()
        with self.session_factory() as db:
            account = db.get(AccountBalance, user_id)
            due = account is None or self.replenisher.grant_due(
                account.balance, account.last_free_grant_at, now
            ) > 0
            if due:
                # Re-evaluate under the lock; a concurrent read may have granted already.
                account = self._lock_account(db, user_id)
                grant = self._replenish(db, account, now)
                db.commit()
                if grant is not None:
                    free_grants_total.labels(service=self.service_name).inc()
                    credits_posted_total.labels(service=self.service_name, kind=grant.kind).inc()
                    logger.info(
                        "free_grant_issued user_id=%s amount=%s balance=%s",
                        user_id,
                        grant.amount,
                        account.balance,
                    )
            return AccountSummary(
                user_id=user_id,
                balance=account.balance,
                pending_conversion_value=account.pending_conversion_value,
                has_pending_conversion=account.pending_conversion_value is not None,
                last_free_grant_at=as_utc(account.last_free_grant_at),
            )

    def get_balance(self, user_id: str) -> Decimal:
        """Current balance after the free-grant policy has been applied."""

        return self.get_account_summary(user_id).balance

    def credit(
        self,
        user_id: str,
        amount,
        kind: TransactionKind | str = TransactionKind.PURCHASE,
        description: str = "",
        external_ref: str | None = None,
        conversion_value: Decimal | None = None,
    ) -> Decimal:
        """Add credits atomically and return the new balance.

        A purchase whose `external_ref` is already recorded for the user raises
        `DuplicatePaymentError` and changes nothing; the partial unique index
        backs this check if two deliveries race past it.
        """

        amount = to_amount(amount)
        try:
            kind = TransactionKind(kind)
        except ValueError as exc:
            raise ValidationError(f"unknown transaction kind: {kind}", context={"kind": str(kind)}) from exc
        if kind is TransactionKind.USAGE:
            raise ValidationError("usage is recorded through debit()", context={"kind": kind.value})

        with self.session_factory() as db:
            account = self._lock_account(db, user_id)
            if external_ref and kind is TransactionKind.PURCHASE:
                existing = db.execute(
                    select(LedgerTransaction.id).where(
                        LedgerTransaction.user_id == user_id,
                        LedgerTransaction.kind == TransactionKind.PURCHASE.value,
                        LedgerTransaction.external_payment_ref == external_ref,
                    )
                ).scalar_one_or_none()
                if existing is not None:
                    logger.info("duplicate purchase skipped user_id=%s external_ref=%s", user_id, external_ref)
                    raise DuplicatePaymentError(user_id, external_ref, account.balance)

            entry = self._post(db, account, amount, kind, description or f"{kind.value} of {amount} credits", external_ref)
            if conversion_value is not None:
                account.pending_conversion_value = Decimal(conversion_value).quantize(CENT)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                logger.warning("purchase unique index rejected duplicate user_id=%s external_ref=%s", user_id, external_ref)
                raise DuplicatePaymentError(user_id, external_ref or "", self._read_balance(db, user_id)) from exc

        credits_posted_total.labels(service=self.service_name, kind=kind.value).inc()
        logger.info(
            "credits_posted user_id=%s kind=%s amount=%s balance=%s transaction_id=%s",
            user_id,
            kind.value,
            amount,
            entry.balance_after,
            entry.id,
        )
        return entry.balance_after

    def debit(self, user_id: str, amount, description: str = "Generation usage") -> Decimal:
        """Charge usage, refusing with `InsufficientFundsError` when the balance is short."""

        amount = to_amount(amount)
        with self.session_factory() as db:
            account = self._lock_account(db, user_id)
            if account.balance < amount:
                available = account.balance
                db.rollback()
                debits_rejected_total.labels(service=self.service_name).inc()
                logger.info("debit_rejected user_id=%s amount=%s available=%s", user_id, amount, available)
                raise InsufficientFundsError(user_id, amount, available)
            entry = self._post(db, account, -amount, TransactionKind.USAGE, description)
            db.commit()

        credits_posted_total.labels(service=self.service_name, kind=TransactionKind.USAGE.value).inc()
        logger.info(
            "credits_debited user_id=%s amount=%s balance=%s transaction_id=%s",
            user_id,
            amount,
            entry.balance_after,
            entry.id,
        )
        return entry.balance_after

    def clear_pending_conversion(self, user_id: str) -> None:
        """Drop the conversion value once the client has reported it."""

        with self.session_factory() as db:
            db.execute(
                update(AccountBalance)
                .where(AccountBalance.user_id == user_id)
                .values(pending_conversion_value=None)
            )
            db.commit()

    def list_transactions(self, user_id: str, limit: int = 50, offset: int = 0) -> list[LedgerTransaction]:
        """Read-only transaction history, newest first."""

        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", context={"limit": limit})
        if offset < 0:
            raise ValidationError("offset must be >= 0", context={"offset": offset})
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(LedgerTransaction)
                    .where(LedgerTransaction.user_id == user_id)
                    .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
                    .limit(limit)
                    .offset(offset)
                ).scalars()
            )

    def _read_balance(self, db, user_id: str) -> Decimal:
        balance = db.execute(
            select(AccountBalance.balance).where(AccountBalance.user_id == user_id)
        ).scalar_one_or_none()
        return balance if balance is not None else Decimal("0")

    def reconcile(self, user_id: str) -> dict:
        """Compare the balance snapshot with the sum of the user's transactions."""

        with self.session_factory() as db:
            balance = self._read_balance(db, user_id)
            ledger_sum, count = db.execute(
                select(
                    func.coalesce(func.sum(LedgerTransaction.amount), 0),
                    func.count(LedgerTransaction.id),
                ).where(LedgerTransaction.user_id == user_id)
            ).one()
        ledger_sum = Decimal(ledger_sum).quantize(CENT)
        return {
            "user_id": user_id,
            "balance": balance,
            "ledger_sum": ledger_sum,
            "balanced": balance.quantize(CENT) == ledger_sum,
            "transaction_count": int(count or 0),
        }

    def reconciliation_report(self, limit: int = 1000) -> dict:
        """Return a global drift summary across accounts."""

        with self.session_factory() as db:
            rows = db.execute(
                select(
                    AccountBalance.user_id,
                    AccountBalance.balance,
                    func.coalesce(func.sum(LedgerTransaction.amount), 0).label("ledger_sum"),
                    func.count(LedgerTransaction.id).label("transaction_count"),
                )
                .outerjoin(LedgerTransaction, LedgerTransaction.user_id == AccountBalance.user_id)
                .group_by(AccountBalance.user_id, AccountBalance.balance)
                .order_by(AccountBalance.user_id)
                .limit(limit)
            ).all()
        imbalanced = [
            {
                "user_id": row.user_id,
                "balance": row.balance,
                "ledger_sum": Decimal(row.ledger_sum).quantize(CENT),
                "transaction_count": int(row.transaction_count or 0),
            }
            for row in rows
            if row.balance.quantize(CENT) != Decimal(row.ledger_sum).quantize(CENT)
        ]
        return {
            "accounts_checked": len(rows),
            "imbalanced_count": len(imbalanced),
            "imbalanced_accounts": imbalanced,
        }
