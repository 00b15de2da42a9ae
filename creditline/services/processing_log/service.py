"""Durable processing log keyed by (event id, event type).

Replaces an in-process "already seen" set: the log survives restarts and is
shared by every instance, so duplicate checks are made against persisted state.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from creditline.common.db import dialect_insert
from creditline.common.logging import logger
from creditline.services.processing_log.models import LogStatus, ProcessingLogEntry


class ProcessingLog:
    """Upsert/read access to `processing_log` rows."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def record(
        self,
        event_id: str,
        event_type: str,
        status: LogStatus,
        message: str,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
        amount: Decimal | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Insert or overwrite the row for `(event_id, event_type)` (last write wins)."""

        table = ProcessingLogEntry.__table__
        now = datetime.now(timezone.utc)
        with self.session_factory() as db:
            stmt = dialect_insert(db, table).values(
                event_id=event_id,
                event_type=event_type,
                status=LogStatus(status).value,
                message=message,
                user_id=user_id,
                session_id=session_id,
                amount=amount,
                metadata=details or {},
                created_at=now,
            )
            excluded = stmt.excluded
            db.execute(
                stmt.on_conflict_do_update(
                    index_elements=["event_id", "event_type"],
                    set_={
                        "status": excluded["status"],
                        "message": excluded["message"],
                        "user_id": excluded["user_id"],
                        "session_id": excluded["session_id"],
                        "amount": excluded["amount"],
                        "metadata": excluded["metadata"],
                        "created_at": excluded["created_at"],
                    },
                )
            )
            db.commit()

    def try_record(self, *args, **kwargs) -> bool:
        """Best-effort `record` for observability-only writes; never raises store errors."""

        try:
            self.record(*args, **kwargs)
            return True
        except SQLAlchemyError as exc:
            logger.warning("processing_log_write_failed event_id=%s error=%s", args[0] if args else None, exc)
            return False

    def get(self, event_id: str, event_type: str) -> ProcessingLogEntry | None:
        with self.session_factory() as db:
            return db.execute(
                select(ProcessingLogEntry).where(
                    ProcessingLogEntry.event_id == event_id,
                    ProcessingLogEntry.event_type == event_type,
                )
            ).scalar_one_or_none()

    def is_completed(self, event_id: str, event_type: str, completed_messages: Iterable[str]) -> bool:
        """True when a prior attempt finished successfully with a terminal outcome.

        Advisory only: two racing deliveries can both see False. The ledger's
        unique purchase reference is what actually prevents double crediting.
        """

        entry = self.get(event_id, event_type)
        return (
            entry is not None
            and entry.status == LogStatus.SUCCESS.value
            and entry.message in set(completed_messages)
        )

    def list_for_user(self, user_id: str, limit: int = 50) -> list[ProcessingLogEntry]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(ProcessingLogEntry)
                    .where(ProcessingLogEntry.user_id == user_id)
                    .order_by(ProcessingLogEntry.created_at.desc())
                    .limit(limit)
                ).scalars()
            )

    def list_by_type(self, event_type: str, limit: int = 100) -> list[ProcessingLogEntry]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(ProcessingLogEntry)
                    .where(ProcessingLogEntry.event_type == event_type)
                    .order_by(ProcessingLogEntry.created_at.desc())
                    .limit(limit)
                ).scalars()
            )

    def list_since(
        self,
        since: datetime,
        event_type: str | None = None,
        limit: int | None = None,
    ) -> list[ProcessingLogEntry]:
        """Entries written at or after `since`, newest first."""

        query = select(ProcessingLogEntry).where(ProcessingLogEntry.created_at >= since)
        if event_type is not None:
            query = query.where(ProcessingLogEntry.event_type == event_type)
        if limit is not None:
            query = query.limit(limit)
        with self.session_factory() as db:
            return list(db.execute(query.order_by(ProcessingLogEntry.created_at.desc())).scalars())

    def prune(self, retention_days: int, now: datetime | None = None) -> int:
        """Delete entries older than the retention window; returns rows removed."""

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        with self.session_factory() as db:
            result = db.execute(delete(ProcessingLogEntry).where(ProcessingLogEntry.created_at < cutoff))
            db.commit()
        logger.info("processing_log_pruned removed=%s cutoff=%s", result.rowcount, cutoff.isoformat())
        return result.rowcount
