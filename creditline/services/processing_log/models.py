"""Processing log persistence: one audit row per (event id, event type)."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import DateTime, Index, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from creditline.common.db import Base, JSONDocument


class LogStatus(str, Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class ProcessingLogEntry(Base):
    """Latest known state of one inbound event or checkout attempt.

    Audit and duplicate-suppression aid only; money is never derived from it.
    """

    __tablename__ = "processing_log"
    __table_args__ = (
        UniqueConstraint("event_id", "event_type", name="uq_processing_log_event"),
        Index("ix_processing_log_user_created", "user_id", "created_at"),
        Index("ix_processing_log_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    event_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String)
    message: Mapped[str] = mapped_column(String)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    details: Mapped[dict] = mapped_column("metadata", JSONDocument, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
