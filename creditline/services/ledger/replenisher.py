"""Free credit replenishment policy evaluated on every balance read."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from creditline.common.config import settings
from creditline.common.db import as_utc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FreeCreditReplenisher:
    """Tops a low balance back up to `grant_amount`, at most once per `cooldown`.

    The check runs at read time inside the ledger's account lock, so the grant
    transaction and the `last_free_grant_at` stamp land together and no
    background job is needed.
    """

    def __init__(
        self,
        grant_amount: Decimal | int = 1,
        cooldown: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.grant_amount = Decimal(grant_amount)
        self.cooldown = cooldown
        self.clock = clock

    @classmethod
    def from_settings(cls) -> "FreeCreditReplenisher":
        return cls(
            grant_amount=settings.free_grant_amount,
            cooldown=timedelta(hours=settings.free_grant_cooldown_hours),
        )

    def grant_due(self, balance: Decimal, last_free_grant_at: datetime | None, now: datetime) -> Decimal:
        """Return the amount to grant now, or zero when no grant is due.

        A negative balance is topped up all the way, so the post-grant balance
        is always exactly `grant_amount`.
        """

        if balance >= self.grant_amount:
            return Decimal("0")
        last = as_utc(last_free_grant_at)
        if last is not None and now - last < self.cooldown:
            return Decimal("0")
        return self.grant_amount - balance
