"""Shared fixtures: isolated SQLite stores, a controllable clock and a fake processor."""

import hashlib
import hmac
import json
import os
import tempfile
import time
from datetime import datetime, timedelta, timezone

# Settings are read at import time, so the environment must be in place first.
_STATE_DIR = tempfile.mkdtemp(prefix="creditline-tests-")
os.environ["POSTGRES_DSN"] = f"sqlite:///{_STATE_DIR}/app.db"
os.environ["API_KEY"] = "test-api-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from creditline.common.db import Base
from creditline.common.errors import TransientUpstreamError
from creditline.services.checkout.catalog import build_catalog
from creditline.services.checkout.processor import CheckoutSessionRef, StripeGateway
from creditline.services.checkout.service import CheckoutService
from creditline.services.ledger import models as ledger_models  # noqa: F401
from creditline.services.ledger.replenisher import FreeCreditReplenisher
from creditline.services.ledger.service import LedgerService
from creditline.services.processing_log import models as processing_log_models  # noqa: F401
from creditline.services.processing_log.service import ProcessingLog
from creditline.services.webhook.service import WebhookService

API_KEY = "test-api-key"
WEBHOOK_SECRET = "whsec_test_secret"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class FakeStripeGateway(StripeGateway):
    """Records processor calls instead of making them; signature checks stay real."""

    def __init__(self) -> None:
        super().__init__(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET)
        self.customers: dict[str, str] = {}
        self.sessions: list[dict] = []
        self.metadata_updates: list[tuple[str, dict]] = []
        self.fail_customer = False
        self.fail_session = False
        self.fail_metadata = False

    def find_customer(self, lookup_key):
        if self.fail_customer:
            raise TransientUpstreamError("customer lookup failed")
        return self.customers.get(lookup_key)

    def create_customer(self, user_id, lookup_key):
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers[lookup_key] = customer_id
        return customer_id

    def create_checkout_session(self, **params):
        if self.fail_session:
            raise TransientUpstreamError("checkout session creation failed", context={"processor": "stripe"})
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({"id": session_id, **params})
        return CheckoutSessionRef(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    def update_customer_metadata(self, customer_id, metadata):
        if self.fail_metadata:
            raise TransientUpstreamError("customer metadata sync failed")
        self.metadata_updates.append((customer_id, metadata))


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a `Stripe-Signature` header the way the processor does."""

    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256)
    return f"t={ts},v1={digest.hexdigest()}"


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'credits.db'}",
        connect_args={"timeout": 30, "check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(session_factory, clock):
    return LedgerService(session_factory, FreeCreditReplenisher(grant_amount=1, clock=clock))


@pytest.fixture
def processing_log(session_factory):
    return ProcessingLog(session_factory)


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def checkout_service(gateway, processing_log):
    catalog = build_catalog(small_ref="", medium_ref="price_medium_test", large_ref="")
    return CheckoutService(gateway, processing_log, catalog=catalog, app_url="https://app.test/")


@pytest.fixture
def webhook_service(gateway, ledger, processing_log):
    return WebhookService(gateway, ledger, processing_log)


@pytest.fixture
def sign():
    return sign_payload


@pytest.fixture
def deliver(webhook_service):
    """Send a body through the webhook service, signed correctly unless told otherwise."""

    def _deliver(body: bytes, signature: str | None = None):
        return webhook_service.handle(body, sign_payload(body) if signature is None else signature)

    return _deliver


@pytest.fixture
def make_event():
    """Factory for serialized checkout-session events."""

    def _make(
        event_id="evt_1",
        event_type="checkout.session.completed",
        user_id="user_1",
        credits="5",
        package_id="small",
        payment_status="paid",
        payment_intent="pi_1",
        session_id="cs_1",
        customer=None,
        amount_total=500,
        metadata=None,
    ) -> bytes:
        if metadata is None:
            metadata = {"user_id": user_id, "package_id": package_id, "credits": credits}
        event = {
            "id": event_id,
            "type": event_type,
            "created": 1772366400,
            "livemode": False,
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "payment_status": payment_status,
                    "payment_intent": payment_intent,
                    "customer": customer,
                    "amount_total": amount_total,
                    "currency": "usd",
                    "metadata": metadata,
                }
            },
        }
        return json.dumps(event).encode("utf-8")

    return _make
