"""Fixed credit package catalog."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from creditline.common.config import settings
from creditline.common.errors import ValidationError


class PackageId(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass(frozen=True)
class CreditPackage:
    """One purchasable tier. `price_ref` is the processor-side price id, if configured."""

    package_id: PackageId
    credits: int
    price_cents: int
    name: str
    description: str
    price_ref: str = ""

    @property
    def price(self) -> Decimal:
        return (Decimal(self.price_cents) / 100).quantize(Decimal("0.01"))

    def line_item(self) -> dict[str, Any]:
        """Checkout line item: the configured price id, else an inline price."""

        if self.price_ref:
            return {"price": self.price_ref, "quantity": 1}
        return {
            "price_data": {
                "currency": "usd",
                "product_data": {"name": self.name, "description": self.description},
                "unit_amount": self.price_cents,
            },
            "quantity": 1,
        }


def build_catalog(
    small_ref: str | None = None,
    medium_ref: str | None = None,
    large_ref: str | None = None,
) -> dict[PackageId, CreditPackage]:
    """Catalog with processor price ids taken from settings unless overridden."""

    return {
        PackageId.SMALL: CreditPackage(
            PackageId.SMALL,
            credits=5,
            price_cents=500,
            name="5 Credits",
            description="Perfect for testing and small projects",
            price_ref=settings.stripe_price_small if small_ref is None else small_ref,
        ),
        PackageId.MEDIUM: CreditPackage(
            PackageId.MEDIUM,
            credits=15,
            price_cents=1200,
            name="15 Credits",
            description="Great for multiple landing pages",
            price_ref=settings.stripe_price_medium if medium_ref is None else medium_ref,
        ),
        PackageId.LARGE: CreditPackage(
            PackageId.LARGE,
            credits=50,
            price_cents=3000,
            name="50 Credits",
            description="Ideal for agencies and heavy users",
            price_ref=settings.stripe_price_large if large_ref is None else large_ref,
        ),
    }


def resolve_package(raw_package_id: str | None, catalog: dict[PackageId, CreditPackage]) -> CreditPackage:
    """Look up a package by id, raising `ValidationError` for anything unknown."""

    try:
        package_id = PackageId(raw_package_id)
    except ValueError as exc:
        raise ValidationError(
            "Invalid package type",
            context={"package_id": raw_package_id, "allowed": [p.value for p in PackageId]},
        ) from exc
    return catalog[package_id]
