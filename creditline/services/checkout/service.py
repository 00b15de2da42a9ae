"""Checkout session initiation.

The session metadata written here is the only channel that ties a later
payment notification back to a user and a credit count.
"""

import hashlib
from dataclasses import dataclass
from uuid import uuid4

from creditline.common.config import settings
from creditline.common.errors import TransientUpstreamError, ValidationError
from creditline.common.logging import logger
from creditline.common.metrics import checkout_sessions_total
from creditline.services.checkout.catalog import CreditPackage, PackageId, build_catalog, resolve_package
from creditline.services.processing_log.models import LogStatus
from creditline.services.processing_log.service import ProcessingLog

CHECKOUT_EVENT_TYPE = "checkout.session.create"


def customer_lookup_key(user_id: str) -> str:
    """Deterministic, non-reversible customer tag for a user id."""

    return hashlib.sha256(f"creditline:{user_id}".encode("utf-8")).hexdigest()[:32]


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: str | None
    package_id: str
    credits: int
    customer_id: str | None


class CheckoutService:
    """Creates hosted checkout sessions for credit packages."""

    def __init__(
        self,
        gateway,
        processing_log: ProcessingLog,
        catalog: dict[PackageId, CreditPackage] | None = None,
        app_url: str | None = None,
        service_name: str = "checkout",
    ) -> None:
        self.gateway = gateway
        self.processing_log = processing_log
        self.catalog = catalog or build_catalog()
        self.app_url = (app_url or settings.app_url).rstrip("/")
        self.service_name = service_name

    def list_packages(self) -> list[CreditPackage]:
        return [self.catalog[package_id] for package_id in PackageId]

    def _resolve_customer(self, user_id: str) -> str | None:
        """Find or create the processor customer; failures only cost the binding."""

        lookup_key = customer_lookup_key(user_id)
        try:
            customer_id = self.gateway.find_customer(lookup_key)
            if customer_id is None:
                customer_id = self.gateway.create_customer(user_id, lookup_key)
                logger.info("processor_customer_created user_id=%s customer_id=%s", user_id, customer_id)
            return customer_id
        except TransientUpstreamError as exc:
            logger.warning("processor_customer_unavailable user_id=%s error=%s", user_id, exc.message)
            return None

    def create_checkout_session(self, user_id: str, package_id: str | None) -> CheckoutSessionResult:
        attempt_id = f"checkout-attempt:{uuid4()}"
        try:
            package = resolve_package(package_id, self.catalog)
        except ValidationError:
            checkout_sessions_total.labels(service=self.service_name, result="invalid_package").inc()
            self.processing_log.try_record(
                attempt_id,
                CHECKOUT_EVENT_TYPE,
                LogStatus.ERROR,
                "invalid_package",
                user_id=user_id,
                details={"package_id": package_id},
            )
            raise

        customer_id = self._resolve_customer(user_id)
        metadata = {
            "user_id": user_id,
            "package_id": package.package_id.value,
            "credits": str(package.credits),
        }
        try:
            session = self.gateway.create_checkout_session(
                line_item=package.line_item(),
                success_url=f"{self.app_url}/?success=true&credits={package.credits}",
                cancel_url=f"{self.app_url}/?canceled=true",
                metadata=metadata,
                customer_id=customer_id,
            )
        except TransientUpstreamError as exc:
            checkout_sessions_total.labels(service=self.service_name, result="error").inc()
            self.processing_log.try_record(
                attempt_id,
                CHECKOUT_EVENT_TYPE,
                LogStatus.ERROR,
                "checkout_session_failed",
                user_id=user_id,
                amount=package.credits,
                details={"package_id": package.package_id.value, "error": exc.message, **exc.context},
            )
            logger.error("checkout_session_failed user_id=%s package_id=%s", user_id, package.package_id.value)
            raise

        checkout_sessions_total.labels(service=self.service_name, result="created").inc()
        self.processing_log.try_record(
            session.id,
            CHECKOUT_EVENT_TYPE,
            LogStatus.SUCCESS,
            "checkout_session_created",
            user_id=user_id,
            session_id=session.id,
            amount=package.credits,
            details={
                "package_id": package.package_id.value,
                "price_cents": package.price_cents,
                "customer_bound": customer_id is not None,
            },
        )
        logger.info(
            "checkout_session_created user_id=%s package_id=%s session_id=%s",
            user_id,
            package.package_id.value,
            session.id,
        )
        return CheckoutSessionResult(
            session_id=session.id,
            url=session.url,
            package_id=package.package_id.value,
            credits=package.credits,
            customer_id=customer_id,
        )
