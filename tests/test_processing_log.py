"""Processing log upserts, duplicate detection and retention."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from creditline.services.processing_log.models import LogStatus, ProcessingLogEntry
from creditline.services.processing_log.service import ProcessingLog


def test_record_upserts_by_event_id_and_type(processing_log, session_factory):
    """Last write wins; there is never more than one row per (event id, type)."""

    processing_log.record("evt_1", "checkout.session.completed", LogStatus.PROCESSING, "processing")
    processing_log.record(
        "evt_1",
        "checkout.session.completed",
        LogStatus.SUCCESS,
        "credits_applied",
        user_id="user_a",
        amount=Decimal("5"),
        details={"package_id": "small"},
    )

    entry = processing_log.get("evt_1", "checkout.session.completed")
    assert entry.status == "success"
    assert entry.message == "credits_applied"
    assert entry.user_id == "user_a"
    assert entry.details == {"package_id": "small"}
    with session_factory() as db:
        assert db.query(ProcessingLogEntry).count() == 1


def test_same_event_id_with_different_type_is_separate(processing_log):
    processing_log.record("evt_1", "checkout.session.completed", LogStatus.SUCCESS, "credits_applied")
    processing_log.record("evt_1", "checkout.session.async_payment_failed", LogStatus.SUCCESS, "async_payment_failed")

    assert processing_log.get("evt_1", "checkout.session.completed").message == "credits_applied"
    assert processing_log.get("evt_1", "checkout.session.async_payment_failed").message == "async_payment_failed"


def test_is_completed_requires_success_and_terminal_message(processing_log):
    completed = {"credits_applied", "already_applied"}

    assert not processing_log.is_completed("evt_1", "t", completed)
    processing_log.record("evt_1", "t", LogStatus.PROCESSING, "processing")
    assert not processing_log.is_completed("evt_1", "t", completed)
    processing_log.record("evt_1", "t", LogStatus.ERROR, "processing_error")
    assert not processing_log.is_completed("evt_1", "t", completed)
    processing_log.record("evt_1", "t", LogStatus.SUCCESS, "credits_applied")
    assert processing_log.is_completed("evt_1", "t", completed)


def test_listings_are_newest_first(processing_log):
    processing_log.record("evt_1", "checkout.session.completed", LogStatus.SUCCESS, "credits_applied", user_id="u1")
    processing_log.record("evt_2", "checkout.session.completed", LogStatus.SUCCESS, "credits_applied", user_id="u1")
    processing_log.record("evt_3", "checkout.session.create", LogStatus.SUCCESS, "checkout_session_created", user_id="u2")

    assert [e.event_id for e in processing_log.list_for_user("u1")] == ["evt_2", "evt_1"]
    assert [e.event_id for e in processing_log.list_by_type("checkout.session.completed")] == ["evt_2", "evt_1"]
    assert [e.event_id for e in processing_log.list_by_type("checkout.session.create")] == ["evt_3"]


def test_prune_removes_entries_past_retention(processing_log, session_factory):
    processing_log.record("evt_old", "t", LogStatus.SUCCESS, "credits_applied")
    processing_log.record("evt_new", "t", LogStatus.SUCCESS, "credits_applied")
    now = datetime.now(timezone.utc)
    with session_factory() as db:
        db.execute(
            update(ProcessingLogEntry)
            .where(ProcessingLogEntry.event_id == "evt_old")
            .values(created_at=now - timedelta(days=31))
        )
        db.commit()

    removed = processing_log.prune(retention_days=30, now=now)

    assert removed == 1
    assert processing_log.get("evt_old", "t") is None
    assert processing_log.get("evt_new", "t") is not None
    assert [e.event_id for e in processing_log.list_since(now - timedelta(days=1))] == ["evt_new"]


def test_try_record_swallows_store_failures(tmp_path):
    """Observability writes must not break the caller when the store is unusable."""

    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    broken = ProcessingLog(sessionmaker(bind=engine, expire_on_commit=False))

    assert broken.try_record("evt_1", "t", LogStatus.ERROR, "invalid_signature") is False
    engine.dispose()
