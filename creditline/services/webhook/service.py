"""Webhook receiver and idempotency guard.

Each delivery runs in two phases. Phase 1 verifies, deduplicates and posts to
the ledger; once that has committed the delivery is acknowledged no matter
what happens next. Phase 2 runs best-effort side effects (processor customer
metadata) whose failures are logged and recorded but never undo phase 1.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PayloadValidationError

from creditline.common import state_machine
from creditline.common.errors import (
    CreditlineError,
    DuplicatePaymentError,
    ErrorKind,
    SignatureError,
    ValidationError,
)
from creditline.common.logging import log_context, logger
from creditline.common.metrics import (
    duplicate_events_skipped_total,
    secondary_effect_failures_total,
    webhook_events_total,
)
from creditline.common.tracing import tracer
from creditline.services.ledger.models import TransactionKind
from creditline.services.ledger.service import LedgerService, to_amount
from creditline.services.processing_log.models import LogStatus
from creditline.services.processing_log.service import ProcessingLog
from creditline.services.webhook.schemas import (
    COMPLETED_OUTCOMES,
    CheckoutSessionPayload,
    WebhookAck,
    WebhookEvent,
    WebhookEventType,
    WebhookOutcome,
)

REJECTED_EVENT_TYPE = "signature_rejected"
MALFORMED_EVENT_TYPE = "malformed_payload"


@dataclass
class Resolution:
    """What phase 1 decided for one delivery."""

    outcome: WebhookOutcome
    user_id: str | None = None
    session_id: str | None = None
    amount: Decimal | None = None
    balance: Decimal | None = None
    customer_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookResult:
    status_code: int
    body: dict[str, Any]
    history: list[str]
    outcome: WebhookOutcome | None = None


def body_digest(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


class WebhookService:
    def __init__(
        self,
        gateway,
        ledger: LedgerService,
        processing_log: ProcessingLog,
        service_name: str = "webhook",
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.processing_log = processing_log
        self.service_name = service_name

    def _result(self, status_code: int, ack: WebhookAck, delivery, outcome=None) -> WebhookResult:
        return WebhookResult(
            status_code=status_code,
            body=ack.model_dump(exclude_none=True),
            history=list(delivery.history),
            outcome=outcome,
        )

    def _reject(self, raw_body: bytes, event_type: str, message: str, reason: str) -> None:
        """Keep a trace of a rejected delivery without storing its payload."""

        digest = body_digest(raw_body)
        self.processing_log.try_record(
            f"sha256:{digest[:32]}",
            event_type,
            LogStatus.ERROR,
            message,
            details={"reason": reason, "body_sha256": digest, "body_bytes": len(raw_body)},
        )
        webhook_events_total.labels(service=self.service_name, event_type="unknown", outcome=message).inc()

    def handle(self, raw_body: bytes, signature_header: str | None) -> WebhookResult:
        """Process one delivery and return the HTTP status and body to send back."""

        delivery = state_machine.DeliveryState()
        try:
            self.gateway.verify_signature(raw_body, signature_header)
        except SignatureError as exc:
            delivery.advance(state_machine.REJECTED)
            logger.warning("webhook_signature_rejected reason=%s", exc.message)
            self._reject(raw_body, REJECTED_EVENT_TYPE, "invalid_signature", exc.message)
            return self._result(
                ErrorKind.SIGNATURE.http_status, WebhookAck(received=False, error="Invalid signature"), delivery
            )

        delivery.advance(state_machine.SIGNATURE_VERIFIED)
        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except PayloadValidationError as exc:
            delivery.advance(state_machine.REJECTED)
            logger.warning("webhook_payload_malformed errors=%s", exc.error_count())
            self._reject(raw_body, MALFORMED_EVENT_TYPE, WebhookOutcome.MALFORMED_PAYLOAD.value, "unparseable envelope")
            return self._result(
                WebhookOutcome.MALFORMED_PAYLOAD.http_status,
                WebhookAck(received=False, error="Malformed payload"),
                delivery,
            )

        with tracer.start_as_current_span("webhook.process") as span:
            span.set_attribute("webhook.event_id", event.id)
            span.set_attribute("webhook.event_type", event.type)
            span_context = span.get_span_context()
            trace_id = format(span_context.trace_id, "032x") if span_context.is_valid else None
            with log_context(trace_id=trace_id, event_id=event.id):
                return self._process(event, delivery)

    def _process(self, event: WebhookEvent, delivery) -> WebhookResult:
        event_type = event.event_type
        if self.processing_log.is_completed(event.id, event.type, COMPLETED_OUTCOMES):
            delivery.advance(state_machine.DUPLICATE)
            duplicate_events_skipped_total.labels(service=self.service_name, event_type=event_type.value).inc()
            logger.info("webhook_duplicate_skipped event_type=%s", event.type)
            return self._result(200, WebhookAck(duplicate=True), delivery)

        delivery.advance(state_machine.PROCESSING)
        try:
            self.processing_log.record(event.id, event.type, LogStatus.PROCESSING, "processing")
            resolution = self._dispatch(event, event_type)
            status = LogStatus.SUCCESS if resolution.outcome.acknowledged else LogStatus.ERROR
            self.processing_log.record(
                event.id,
                event.type,
                status,
                resolution.outcome.value,
                user_id=resolution.user_id,
                session_id=resolution.session_id,
                amount=resolution.amount,
                details=resolution.details,
            )
        except Exception as exc:
            delivery.advance(state_machine.FAILED)
            logger.exception("webhook_processing_failed event_type=%s", event.type)
            self.processing_log.try_record(
                event.id,
                event.type,
                LogStatus.ERROR,
                WebhookOutcome.PROCESSING_ERROR.value,
                details={"error": str(exc), "error_type": exc.__class__.__name__},
            )
            webhook_events_total.labels(
                service=self.service_name,
                event_type=event_type.value,
                outcome=WebhookOutcome.PROCESSING_ERROR.value,
            ).inc()
            return self._result(
                WebhookOutcome.PROCESSING_ERROR.http_status,
                WebhookAck(received=False, error="Webhook handler failed"),
                delivery,
                WebhookOutcome.PROCESSING_ERROR,
            )

        webhook_events_total.labels(
            service=self.service_name,
            event_type=event_type.value,
            outcome=resolution.outcome.value,
        ).inc()
        if not resolution.outcome.acknowledged:
            delivery.advance(state_machine.REJECTED)
            return self._result(
                resolution.outcome.http_status,
                WebhookAck(received=False, outcome=resolution.outcome.value, error=resolution.outcome.value),
                delivery,
                resolution.outcome,
            )

        delivery.advance(state_machine.APPLIED)
        if resolution.outcome is WebhookOutcome.CREDITS_APPLIED:
            self._sync_customer(event, resolution)
        return self._result(
            resolution.outcome.http_status, WebhookAck(outcome=resolution.outcome.value), delivery, resolution.outcome
        )

    def _dispatch(self, event: WebhookEvent, event_type: WebhookEventType) -> Resolution:
        if event_type in (WebhookEventType.CHECKOUT_COMPLETED, WebhookEventType.ASYNC_PAYMENT_SUCCEEDED):
            return self._apply_checkout(event)
        if event_type is WebhookEventType.ASYNC_PAYMENT_FAILED:
            session = self._session(event)
            if session is None:
                return Resolution(WebhookOutcome.MALFORMED_PAYLOAD, details={"reason": "invalid session object"})
            user_id = session.metadata_value("user_id", "userId")
            logger.warning("async_payment_failed user_id=%s session_id=%s", user_id, session.id)
            return Resolution(WebhookOutcome.ASYNC_PAYMENT_FAILED, user_id=user_id, session_id=session.id)
        logger.info("webhook_event_unhandled event_type=%s", event.type)
        return Resolution(WebhookOutcome.UNHANDLED_EVENT_TYPE)

    def _session(self, event: WebhookEvent) -> CheckoutSessionPayload | None:
        try:
            return CheckoutSessionPayload.model_validate(event.data.object)
        except PayloadValidationError:
            return None

    def _apply_checkout(self, event: WebhookEvent) -> Resolution:
        session = self._session(event)
        if session is None:
            return Resolution(WebhookOutcome.MALFORMED_PAYLOAD, details={"reason": "invalid session object"})

        # `userId` / `packageType` are the keys written by older checkout clients.
        user_id = session.metadata_value("user_id", "userId")
        raw_credits = session.metadata_value("credits")
        package_id = session.metadata_value("package_id", "packageType")
        base = {"package_id": package_id, "payment_status": session.payment_status}
        if not user_id or not raw_credits:
            logger.warning("webhook_metadata_missing session_id=%s", session.id)
            return Resolution(WebhookOutcome.MISSING_METADATA, user_id=user_id, session_id=session.id, details=base)
        try:
            credits = to_amount(raw_credits)
        except ValidationError:
            logger.warning("webhook_metadata_invalid session_id=%s credits=%r", session.id, raw_credits)
            return Resolution(
                WebhookOutcome.INVALID_METADATA,
                user_id=user_id,
                session_id=session.id,
                details={**base, "credits": raw_credits},
            )
        if not session.is_paid:
            logger.info("webhook_payment_not_completed session_id=%s status=%s", session.id, session.payment_status)
            return Resolution(
                WebhookOutcome.PAYMENT_NOT_COMPLETED,
                user_id=user_id,
                session_id=session.id,
                amount=credits,
                details=base,
            )

        conversion_value = None
        if session.amount_total is not None:
            conversion_value = Decimal(session.amount_total) / 100
        details = {**base, "payment_ref": session.payment_ref, "amount_total": session.amount_total}
        with log_context(user_id=user_id):
            try:
                balance = self.ledger.credit(
                    user_id,
                    credits,
                    kind=TransactionKind.PURCHASE,
                    description=f"Purchased {raw_credits} credits",
                    external_ref=session.payment_ref,
                    conversion_value=conversion_value,
                )
            except DuplicatePaymentError as exc:
                return Resolution(
                    WebhookOutcome.ALREADY_APPLIED,
                    user_id=user_id,
                    session_id=session.id,
                    amount=credits,
                    balance=exc.balance,
                    details=details,
                )
            logger.info("credits_applied user_id=%s credits=%s balance=%s", user_id, credits, balance)
        return Resolution(
            WebhookOutcome.CREDITS_APPLIED,
            user_id=user_id,
            session_id=session.id,
            amount=credits,
            balance=balance,
            customer_id=session.customer,
            details={**details, "balance_after": str(balance)},
        )

    def _sync_customer(self, event: WebhookEvent, resolution: Resolution) -> None:
        """Phase 2: mirror the new balance onto the processor customer."""

        if not resolution.customer_id:
            return
        metadata = {
            "credit_balance": str(resolution.balance),
            "last_purchase_credits": str(resolution.amount),
            "last_purchase_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.gateway.update_customer_metadata(resolution.customer_id, metadata)
        except Exception as exc:
            # The credit is committed; nothing here may change the ack.
            error = exc.message if isinstance(exc, CreditlineError) else f"{exc.__class__.__name__}: {exc}"
            secondary_effect_failures_total.labels(service=self.service_name, effect="customer_metadata_sync").inc()
            logger.warning(
                "customer_metadata_sync_failed customer_id=%s error=%s",
                resolution.customer_id,
                error,
            )
            self.processing_log.try_record(
                event.id,
                event.type,
                LogStatus.SUCCESS,
                resolution.outcome.value,
                user_id=resolution.user_id,
                session_id=resolution.session_id,
                amount=resolution.amount,
                details={**resolution.details, "customer_sync": "failed", "customer_sync_error": error},
            )
