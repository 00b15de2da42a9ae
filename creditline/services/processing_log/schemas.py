from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProcessingLogView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: str
    event_type: str
    status: str
    message: str
    user_id: str | None = None
    session_id: str | None = None
    amount: Decimal | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
