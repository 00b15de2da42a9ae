"""Webhook service API: receives processor notifications and credits purchases."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from creditline.common.config import settings
from creditline.common.db import Base, SessionLocal, engine
from creditline.common.errors import register_error_handlers
from creditline.common.logging import configure_logging
from creditline.common.metrics import install_http_metrics, metrics_response
from creditline.common.startup import log_startup_config
from creditline.common.tracing import instrument_app, setup_tracing
from creditline.services.checkout.processor import StripeGateway
from creditline.services.ledger.service import LedgerService
from creditline.services.processing_log.service import ProcessingLog
from creditline.services.webhook.service import WebhookService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "STRIPE_WEBHOOK_SECRET", "STRIPE_WEBHOOK_TOLERANCE_SECONDS"],
)
service = WebhookService(
    StripeGateway.from_settings(),
    LedgerService(SessionLocal),
    ProcessingLog(SessionLocal),
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Creditline Webhook Service", lifespan=lifespan)
instrument_app(app)
install_http_metrics(app, settings.service_name)
register_error_handlers(app)


@app.post("/credits/webhook")
async def receive_webhook(request: Request, stripe_signature: str | None = Header(default=None)):
    """Signature is checked against the raw body, so it is read before any parsing."""

    raw_body = await request.body()
    result = await run_in_threadpool(service.handle, raw_body, stripe_signature)
    return JSONResponse(status_code=result.status_code, content=result.body)


@app.get("/metrics")
def metrics():
    return metrics_response()


@app.get("/health")
def health():
    return {"ok": True}
