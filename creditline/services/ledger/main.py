"""Ledger service API.

Balance reads (with inline free-grant replenishment), transaction history, the
internal debit/credit surface used by application code, and reconciliation
endpoints for integrity checks.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import Depends, FastAPI, Query

from creditline.common.config import settings
from creditline.common.db import Base, SessionLocal, engine
from creditline.common.errors import ValidationError, register_error_handlers
from creditline.common.identity import current_user_id, require_api_key
from creditline.common.logging import configure_logging
from creditline.common.metrics import install_http_metrics, metrics_response
from creditline.common.startup import log_startup_config
from creditline.common.tracing import instrument_app, setup_tracing
from creditline.services.ledger.schemas import (
    AccountSummary,
    BalanceResponse,
    CreditRequest,
    DebitRequest,
    TransactionPage,
    TransactionView,
)
from creditline.services.ledger.service import LedgerService
from creditline.services.processing_log.schemas import ProcessingLogView
from creditline.services.processing_log.service import ProcessingLog

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "FREE_GRANT_AMOUNT", "FREE_GRANT_COOLDOWN_HOURS"],
)
service = LedgerService(SessionLocal)
processing_log_store = ProcessingLog(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Optionally create tables for local runs; production uses Alembic."""

    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Creditline Ledger Service", lifespan=lifespan)
instrument_app(app)
install_http_metrics(app, settings.service_name)
register_error_handlers(app)


@app.get("/credits/balance", response_model=AccountSummary)
def get_balance(user_id: str = Depends(current_user_id)):
    """Current balance; tops up with the free grant when one is due."""

    return service.get_account_summary(user_id)


@app.get("/credits/transactions", response_model=TransactionPage)
def get_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(current_user_id),
):
    """Paginated transaction history, newest first."""

    rows = service.list_transactions(user_id, limit=limit, offset=offset)
    return TransactionPage(
        user_id=user_id,
        limit=limit,
        offset=offset,
        transactions=[TransactionView.model_validate(row) for row in rows],
    )


@app.post("/credits/clear-conversion")
def clear_conversion(user_id: str = Depends(current_user_id)):
    """Acknowledge that the client reported the pending purchase conversion."""

    service.clear_pending_conversion(user_id)
    return {"success": True}


@app.post("/internal/debit", response_model=BalanceResponse, dependencies=[Depends(require_api_key)])
def debit(req: DebitRequest):
    """Charge usage; 402 when the balance does not cover it."""

    balance = service.debit(req.user_id, req.amount, req.description)
    return BalanceResponse(user_id=req.user_id, balance=balance)


@app.post("/internal/credit", response_model=BalanceResponse, dependencies=[Depends(require_api_key)])
def credit(req: CreditRequest):
    """Refunds and operator credits; purchases normally arrive via the webhook."""

    balance = service.credit(
        req.user_id,
        req.amount,
        kind=req.kind,
        description=req.description,
        external_ref=req.external_ref,
    )
    return BalanceResponse(user_id=req.user_id, balance=balance)


@app.get("/reconciliation", dependencies=[Depends(require_api_key)])
def reconciliation_report(limit: int = Query(default=1000, ge=1, le=10000)):
    """Return global balance-vs-ledger drift summary."""

    return service.reconciliation_report(limit=limit)


@app.get("/reconciliation/{user_id}", dependencies=[Depends(require_api_key)])
def reconciliation(user_id: str):
    """Return balance-vs-ledger details for one user."""

    return service.reconcile(user_id)


@app.get(
    "/ops/processing-log",
    response_model=list[ProcessingLogView],
    dependencies=[Depends(require_api_key)],
)
def processing_log(
    user_id: str | None = None,
    event_type: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    since_hours: int | None = Query(default=None, ge=1, le=24 * 90),
):
    """Recent processing-log entries for one user, one event type, or a time window.

    `since_hours` bounds the listing to entries written in the last N hours and
    may be combined with `event_type`; `user_id` takes precedence over both.
    """

    if user_id:
        rows = processing_log_store.list_for_user(user_id, limit=limit)
    elif since_hours is not None:
        since = datetime.now(timezone.utc) - timedelta(hours=since_hours)
        rows = processing_log_store.list_since(since, event_type=event_type, limit=limit)
    elif event_type:
        rows = processing_log_store.list_by_type(event_type, limit=limit)
    else:
        raise ValidationError("user_id, event_type or since_hours is required")
    return [ProcessingLogView.model_validate(row) for row in rows]


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
