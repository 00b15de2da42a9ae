"""Webhook verification, idempotent crediting and the two-phase side-effect model."""

import json
import threading
import time
from decimal import Decimal

from creditline.common.state_machine import (
    APPLIED,
    DUPLICATE,
    FAILED,
    PROCESSING,
    RECEIVED,
    REJECTED,
    SIGNATURE_VERIFIED,
)
from creditline.services.webhook.schemas import WebhookOutcome
from creditline.services.webhook.service import REJECTED_EVENT_TYPE


def test_paid_checkout_credits_once(deliver, ledger, processing_log, make_event):
    """A verified, paid checkout credits the package and records the outcome."""

    result = deliver(make_event())

    assert result.status_code == 200
    assert result.body == {"received": True, "duplicate": False, "outcome": "credits_applied"}
    assert result.history == [RECEIVED, SIGNATURE_VERIFIED, PROCESSING, APPLIED]
    assert ledger.reconcile("user_1")["balance"] == Decimal("5.00")
    purchase = ledger.list_transactions("user_1")[0]
    assert purchase.kind == "purchase"
    assert purchase.external_payment_ref == "pi_1"
    assert purchase.description == "Purchased 5 credits"

    entry = processing_log.get("evt_1", "checkout.session.completed")
    assert (entry.status, entry.message, entry.user_id) == ("success", "credits_applied", "user_1")
    assert entry.amount == Decimal("5.00")


def test_replayed_event_is_acknowledged_without_mutation(deliver, ledger, make_event):
    body = make_event()
    deliver(body)

    replay = deliver(body)

    assert replay.status_code == 200
    assert replay.body["duplicate"] is True
    assert replay.history == [RECEIVED, SIGNATURE_VERIFIED, DUPLICATE]
    assert ledger.reconcile("user_1")["balance"] == Decimal("5.00")
    assert len(ledger.list_transactions("user_1")) == 1


def test_new_event_for_same_payment_is_already_applied(deliver, ledger, make_event):
    """Two distinct events for one payment intent still credit only once."""

    deliver(make_event(event_id="evt_1"))
    second = deliver(make_event(event_id="evt_2", event_type="checkout.session.async_payment_succeeded"))

    assert second.status_code == 200
    assert second.outcome is WebhookOutcome.ALREADY_APPLIED
    assert ledger.reconcile("user_1")["balance"] == Decimal("5.00")


def test_session_id_is_reference_when_payment_intent_absent(deliver, ledger, make_event):
    deliver(make_event(payment_intent=None, session_id="cs_9"))

    assert ledger.list_transactions("user_1")[0].external_payment_ref == "cs_9"


def test_invalid_signature_is_rejected_without_mutation(deliver, sign, ledger, processing_log, make_event):
    body = make_event()

    result = deliver(body, signature=sign(body, secret="whsec_wrong"))

    assert result.status_code == 400
    assert result.body["received"] is False
    assert result.history == [RECEIVED, REJECTED]
    assert ledger.reconcile("user_1")["transaction_count"] == 0
    rejected = processing_log.list_by_type(REJECTED_EVENT_TYPE)
    assert len(rejected) == 1
    assert rejected[0].message == "invalid_signature"
    assert "user_1" not in json.dumps(rejected[0].details)


def test_missing_signature_header_is_rejected(webhook_service, make_event):
    assert webhook_service.handle(make_event(), None).status_code == 400


def test_stale_signature_timestamp_is_rejected(deliver, sign, make_event):
    body = make_event()

    result = deliver(body, signature=sign(body, timestamp=int(time.time()) - 3600))

    assert result.status_code == 400


def test_malformed_body_is_rejected(deliver):
    result = deliver(b"{not json")

    assert result.status_code == 400
    assert result.history == [RECEIVED, SIGNATURE_VERIFIED, REJECTED]


def test_missing_metadata_is_acknowledged_without_mutation(deliver, ledger, processing_log, make_event):
    result = deliver(make_event(metadata={"package_id": "small"}))

    assert result.status_code == 200
    assert result.outcome is WebhookOutcome.MISSING_METADATA
    assert ledger.reconcile("user_1")["transaction_count"] == 0
    assert processing_log.get("evt_1", "checkout.session.completed").message == "missing_metadata"


def test_non_numeric_credits_is_a_permanent_error(deliver, ledger, processing_log, make_event):
    result = deliver(make_event(credits="five"))

    assert result.status_code == 400
    assert result.outcome is WebhookOutcome.INVALID_METADATA
    assert result.history[-1] == REJECTED
    assert ledger.reconcile("user_1")["transaction_count"] == 0
    entry = processing_log.get("evt_1", "checkout.session.completed")
    assert (entry.status, entry.message) == ("error", "invalid_metadata")


def test_non_positive_credits_is_invalid(deliver, make_event):
    assert deliver(make_event(credits="0")).outcome is WebhookOutcome.INVALID_METADATA


def test_unpaid_session_does_not_credit(deliver, ledger, make_event):
    result = deliver(make_event(payment_status="unpaid"))

    assert result.status_code == 200
    assert result.outcome is WebhookOutcome.PAYMENT_NOT_COMPLETED
    assert ledger.reconcile("user_1")["transaction_count"] == 0


def test_async_payment_success_credits_after_unpaid_completion(deliver, ledger, make_event):
    deliver(make_event(event_id="evt_1", payment_status="unpaid"))
    result = deliver(make_event(event_id="evt_2", event_type="checkout.session.async_payment_succeeded"))

    assert result.outcome is WebhookOutcome.CREDITS_APPLIED
    assert ledger.reconcile("user_1")["balance"] == Decimal("5.00")


def test_async_payment_failure_is_acknowledged(deliver, ledger, make_event):
    result = deliver(make_event(event_type="checkout.session.async_payment_failed", payment_status="unpaid"))

    assert result.status_code == 200
    assert result.outcome is WebhookOutcome.ASYNC_PAYMENT_FAILED
    assert ledger.reconcile("user_1")["transaction_count"] == 0


def test_unhandled_event_type_is_acknowledged(deliver, make_event):
    result = deliver(make_event(event_type="invoice.paid"))

    assert result.status_code == 200
    assert result.outcome is WebhookOutcome.UNHANDLED_EVENT_TYPE


def test_legacy_metadata_keys_are_accepted(deliver, ledger, make_event):
    body = make_event(metadata={"userId": "user_1", "packageType": "medium", "credits": "15"})

    assert deliver(body).outcome is WebhookOutcome.CREDITS_APPLIED
    assert ledger.reconcile("user_1")["balance"] == Decimal("15.00")


def test_conversion_value_comes_from_amount_total(deliver, ledger, make_event):
    deliver(make_event(credits="15", amount_total=1200))

    assert ledger.get_account_summary("user_1").pending_conversion_value == Decimal("12.00")


def test_customer_metadata_is_synced_after_credit(deliver, gateway, make_event):
    deliver(make_event(customer="cus_7"))

    customer_id, metadata = gateway.metadata_updates[0]
    assert customer_id == "cus_7"
    assert metadata["credit_balance"] == "5.00"
    assert metadata["last_purchase_credits"] == "5.00"


def test_secondary_failure_never_rolls_back_credit(deliver, gateway, ledger, processing_log, make_event):
    gateway.fail_metadata = True

    result = deliver(make_event(customer="cus_7"))

    assert result.status_code == 200
    assert result.outcome is WebhookOutcome.CREDITS_APPLIED
    assert ledger.reconcile("user_1")["balance"] == Decimal("5.00")
    entry = processing_log.get("evt_1", "checkout.session.completed")
    assert entry.status == "success"
    assert entry.details["customer_sync"] == "failed"


def test_processing_failure_returns_500_and_allows_redelivery(
    deliver, webhook_service, ledger, processing_log, make_event, monkeypatch
):
    """A crash before completion leaves the event retryable."""

    def explode(*args, **kwargs):
        raise RuntimeError("store went away")

    body = make_event()
    monkeypatch.setattr(webhook_service.ledger, "credit", explode)
    failed = deliver(body)

    assert failed.status_code == 500
    assert failed.history[-1] == FAILED
    entry = processing_log.get("evt_1", "checkout.session.completed")
    assert (entry.status, entry.message) == ("error", "processing_error")

    monkeypatch.undo()
    retried = deliver(body)

    assert retried.status_code == 200
    assert retried.outcome is WebhookOutcome.CREDITS_APPLIED
    assert ledger.reconcile("user_1")["balance"] == Decimal("5.00")


def test_unexpected_sync_error_still_acknowledges_credit(
    deliver, gateway, ledger, processing_log, make_event, monkeypatch
):
    """Any exception from the customer sync is recorded, never surfaced as a failed delivery."""

    def broken_update(customer_id, metadata):
        raise ValueError("unexpected")

    monkeypatch.setattr(gateway, "update_customer_metadata", broken_update)

    result = deliver(make_event(customer="cus_7"))

    assert result.status_code == 200
    assert result.outcome is WebhookOutcome.CREDITS_APPLIED
    assert ledger.reconcile("user_1")["balance"] == Decimal("5.00")
    entry = processing_log.get("evt_1", "checkout.session.completed")
    assert entry.status == "success"
    assert entry.details["customer_sync"] == "failed"
    assert entry.details["customer_sync_error"] == "ValueError: unexpected"


def test_concurrent_duplicate_deliveries_credit_once(deliver, ledger, make_event):
    """Simultaneous redeliveries of one event post a single purchase."""

    body = make_event(credits="15")
    workers = 4
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        result = deliver(body)
        with lock:
            results.append(result)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(results) == workers
    assert all(result.status_code == 200 for result in results)
    applied = [result for result in results if result.outcome is WebhookOutcome.CREDITS_APPLIED]
    assert len(applied) == 1
    for result in results:
        if result is not applied[0]:
            assert result.outcome is WebhookOutcome.ALREADY_APPLIED or result.body["duplicate"] is True
    purchases = [row for row in ledger.list_transactions("user_1") if row.kind == "purchase"]
    assert len(purchases) == 1
    report = ledger.reconcile("user_1")
    assert report["balance"] == Decimal("15.00")
    assert report["balanced"]
