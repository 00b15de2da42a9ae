"""Thin Stripe gateway used by checkout and webhook services.

All outbound processor calls go through here so timeouts, retries and error
mapping live in one place. Stripe errors surface as `TransientUpstreamError`;
signature failures as `SignatureError`.
"""

from dataclasses import dataclass
from typing import Any

import stripe

from creditline.common.config import settings
from creditline.common.errors import SignatureError, TransientUpstreamError
from creditline.common.logging import logger


@dataclass(frozen=True)
class CheckoutSessionRef:
    """Identifiers returned after creating a hosted checkout session."""

    id: str
    url: str | None


class StripeGateway:
    """Customer, checkout-session and webhook-signature operations against Stripe."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout_seconds: float = 10.0,
        max_network_retries: int = 2,
        webhook_tolerance_seconds: int = 300,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.webhook_tolerance_seconds = webhook_tolerance_seconds
        stripe.max_network_retries = max_network_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)
        if not webhook_secret:
            logger.warning("stripe webhook secret not configured; every webhook will be rejected")

    @classmethod
    def from_settings(cls) -> "StripeGateway":
        return cls(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.stripe_timeout_seconds,
            max_network_retries=settings.stripe_max_network_retries,
            webhook_tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise TransientUpstreamError("payment processor is not configured", context={"processor": "stripe"})

    def find_customer(self, lookup_key: str) -> str | None:
        """Return the customer id tagged with `lookup_key`, if any."""

        self._require_api_key()
        try:
            result = stripe.Customer.search(
                query=f"metadata['lookup_key']:'{lookup_key}'",
                limit=1,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            raise TransientUpstreamError(
                "customer lookup failed", context={"processor": "stripe", "error": exc.__class__.__name__}
            ) from exc
        data = result.data
        return data[0].id if data else None

    def create_customer(self, user_id: str, lookup_key: str) -> str:
        """Create a customer; the lookup key doubles as the idempotency key."""

        self._require_api_key()
        try:
            customer = stripe.Customer.create(
                metadata={"user_id": user_id, "lookup_key": lookup_key},
                idempotency_key=f"customer-{lookup_key}",
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            raise TransientUpstreamError(
                "customer creation failed", context={"processor": "stripe", "error": exc.__class__.__name__}
            ) from exc
        return customer.id

    def create_checkout_session(
        self,
        *,
        line_item: dict[str, Any],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_id: str | None = None,
    ) -> CheckoutSessionRef:
        """Create a one-off payment checkout session."""

        self._require_api_key()
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [line_item],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id
        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            raise TransientUpstreamError(
                "checkout session creation failed",
                context={"processor": "stripe", "error": exc.__class__.__name__},
            ) from exc
        return CheckoutSessionRef(id=session.id, url=session.url)

    def update_customer_metadata(self, customer_id: str, metadata: dict[str, str]) -> None:
        self._require_api_key()
        try:
            stripe.Customer.modify(customer_id, metadata=metadata, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise TransientUpstreamError(
                "customer metadata sync failed",
                context={"processor": "stripe", "error": exc.__class__.__name__},
            ) from exc

    def verify_signature(self, raw_body: bytes, signature_header: str | None) -> None:
        """Check `Stripe-Signature` against the raw, unparsed body."""

        if not self.webhook_secret:
            raise SignatureError("webhook secret not configured")
        if not signature_header:
            raise SignatureError("missing signature header")
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureError("payload is not valid UTF-8") from exc
        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature_header,
                self.webhook_secret,
                self.webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureError("invalid signature") from exc
