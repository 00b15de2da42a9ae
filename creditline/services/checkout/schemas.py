from decimal import Decimal

from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    package_id: str


class CheckoutResponse(BaseModel):
    session_id: str
    url: str | None


class PackageView(BaseModel):
    package_id: str
    credits: int
    price: Decimal
    name: str
    description: str
