"""Typed views over processor webhook payloads."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from creditline.common.errors import ErrorKind


class WebhookEventType(str, Enum):
    """Event types this receiver dispatches on; everything else is `UNHANDLED`."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    UNHANDLED = "unhandled"

    @classmethod
    def parse(cls, raw: str) -> "WebhookEventType":
        try:
            parsed = cls(raw)
        except ValueError:
            return cls.UNHANDLED
        return parsed


class WebhookOutcome(str, Enum):
    """Outcome message stored in the processing log for each delivery."""

    CREDITS_APPLIED = "credits_applied"
    ALREADY_APPLIED = "already_applied"
    MISSING_METADATA = "missing_metadata"
    INVALID_METADATA = "invalid_metadata"
    MALFORMED_PAYLOAD = "malformed_payload"
    PAYMENT_NOT_COMPLETED = "payment_not_completed"
    ASYNC_PAYMENT_FAILED = "async_payment_failed"
    UNHANDLED_EVENT_TYPE = "unhandled_event_type"
    PROCESSING_ERROR = "processing_error"

    @property
    def acknowledged(self) -> bool:
        """Outcomes the processor should not redeliver."""

        return self not in (
            WebhookOutcome.INVALID_METADATA,
            WebhookOutcome.MALFORMED_PAYLOAD,
            WebhookOutcome.PROCESSING_ERROR,
        )

    @property
    def http_status(self) -> int:
        return _OUTCOME_ERROR_KIND[self].http_status if self in _OUTCOME_ERROR_KIND else 200


_OUTCOME_ERROR_KIND: dict[WebhookOutcome, ErrorKind] = {
    WebhookOutcome.INVALID_METADATA: ErrorKind.VALIDATION,
    WebhookOutcome.MALFORMED_PAYLOAD: ErrorKind.VALIDATION,
    WebhookOutcome.PROCESSING_ERROR: ErrorKind.TRANSIENT_UPSTREAM,
    WebhookOutcome.UNHANDLED_EVENT_TYPE: ErrorKind.UNHANDLED_EVENT_TYPE,
}


# A success entry with one of these messages means redelivery can be skipped.
COMPLETED_OUTCOMES = frozenset(outcome.value for outcome in WebhookOutcome if outcome.acknowledged)

PAID_STATUSES = frozenset({"paid", "no_payment_required"})


def _object_id(value: Any) -> Any:
    # Expanded objects arrive as dicts; only the id is needed.
    if isinstance(value, dict):
        return value.get("id")
    return value


class WebhookEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: dict[str, Any]


class WebhookEvent(BaseModel):
    """Envelope of a processor notification."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    created: int | None = None
    livemode: bool = False
    data: WebhookEventData

    @property
    def event_type(self) -> WebhookEventType:
        return WebhookEventType.parse(self.type)


class CheckoutSessionPayload(BaseModel):
    """The checkout session object carried by `checkout.session.*` events."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    payment_status: str | None = None
    payment_intent: str | None = None
    customer: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payment_intent", "customer", mode="before")
    @classmethod
    def _collapse_expanded(cls, value: Any) -> Any:
        return _object_id(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _null_metadata(cls, value: Any) -> Any:
        return value or {}

    @property
    def is_paid(self) -> bool:
        return self.payment_status in PAID_STATUSES

    @property
    def payment_ref(self) -> str:
        """Stable external reference for the ledger: payment intent, else session id."""

        return self.payment_intent or self.id

    def metadata_value(self, *keys: str) -> str | None:
        """First non-empty metadata value among `keys`."""

        for key in keys:
            value = self.metadata.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
        return None


class WebhookAck(BaseModel):
    received: bool = True
    duplicate: bool = False
    outcome: str | None = None
    error: str | None = None
