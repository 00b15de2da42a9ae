"""Error taxonomy shared by every service.

Callers branch on `ErrorKind`, never on message text. Each kind carries the
HTTP status it maps to when it reaches an API boundary.
"""

from decimal import Decimal
from enum import Enum
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from creditline.common.logging import logger


class ErrorKind(str, Enum):
    """Machine-readable error codes."""

    VALIDATION = "validation"
    AUTH = "auth"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SIGNATURE = "signature"
    TRANSIENT_UPSTREAM = "transient_upstream"
    DUPLICATE_PAYMENT = "duplicate_payment"
    UNHANDLED_EVENT_TYPE = "unhandled_event_type"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT_UPSTREAM


_HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.INSUFFICIENT_FUNDS: 402,
    ErrorKind.SIGNATURE: 400,
    ErrorKind.TRANSIENT_UPSTREAM: 500,
    ErrorKind.DUPLICATE_PAYMENT: 409,
    ErrorKind.UNHANDLED_EVENT_TYPE: 200,
}


class CreditlineError(Exception):
    """Base exception carrying an `ErrorKind` plus a context map."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for API responses."""

        return {
            "error": self.kind.value,
            "message": self.message,
            "details": {key: _jsonable(value) for key, value in self.context.items()},
        }


class ValidationError(CreditlineError):
    """Bad package, malformed input, or an amount outside the allowed range."""

    kind = ErrorKind.VALIDATION


class AuthError(CreditlineError):
    """Caller identity is missing or the service credential is wrong."""

    kind = ErrorKind.AUTH


class InsufficientFundsError(CreditlineError):
    """Balance does not cover the requested debit; callers should prompt a purchase."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, user_id: str, required: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}. "
            "Purchase more credits to continue.",
            context={
                "user_id": user_id,
                "required": required,
                "available": available,
                "shortfall": required - available,
            },
        )
        self.required = required
        self.available = available


class SignatureError(CreditlineError):
    """Inbound webhook failed signature verification."""

    kind = ErrorKind.SIGNATURE


class TransientUpstreamError(CreditlineError):
    """Payment processor or store unreachable; safe to retry."""

    kind = ErrorKind.TRANSIENT_UPSTREAM


class DuplicatePaymentError(CreditlineError):
    """A purchase with this external payment reference was already credited."""

    kind = ErrorKind.DUPLICATE_PAYMENT

    def __init__(self, user_id: str, external_ref: str, balance: Decimal) -> None:
        super().__init__(
            f"Payment {external_ref} already credited",
            context={"user_id": user_id, "external_ref": external_ref, "balance": balance},
        )
        self.balance = balance


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


def register_error_handlers(app: FastAPI) -> None:
    """Map `CreditlineError` to structured JSON and hide unexpected failures."""

    @app.exception_handler(CreditlineError)
    async def creditline_error_handler(request: Request, exc: CreditlineError):
        logger.warning(
            "request_failed path=%s kind=%s message=%s",
            request.url.path,
            exc.kind.value,
            exc.message,
        )
        return JSONResponse(status_code=exc.kind.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_exception path=%s method=%s", request.url.path, request.method)
        return JSONResponse(
            status_code=500,
            content={"error": ErrorKind.TRANSIENT_UPSTREAM.value, "message": "Internal server error"},
        )
