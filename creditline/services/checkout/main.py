"""Checkout service API: package listing and hosted checkout session creation."""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from creditline.common.config import settings
from creditline.common.db import Base, SessionLocal, engine
from creditline.common.errors import register_error_handlers
from creditline.common.identity import current_user_id
from creditline.common.logging import configure_logging
from creditline.common.metrics import install_http_metrics, metrics_response
from creditline.common.startup import log_startup_config
from creditline.common.tracing import instrument_app, setup_tracing
from creditline.services.checkout.processor import StripeGateway
from creditline.services.checkout.schemas import CheckoutRequest, CheckoutResponse, PackageView
from creditline.services.checkout.service import CheckoutService
from creditline.services.processing_log.service import ProcessingLog

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "APP_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_PRICE_SMALL",
        "STRIPE_PRICE_MEDIUM",
        "STRIPE_PRICE_LARGE",
    ],
)
service = CheckoutService(StripeGateway.from_settings(), ProcessingLog(SessionLocal))


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Creditline Checkout Service", lifespan=lifespan)
instrument_app(app)
install_http_metrics(app, settings.service_name)
register_error_handlers(app)


@app.get("/credits/packages", response_model=list[PackageView])
def list_packages():
    return [
        PackageView(
            package_id=package.package_id.value,
            credits=package.credits,
            price=package.price,
            name=package.name,
            description=package.description,
        )
        for package in service.list_packages()
    ]


@app.post("/credits/checkout", response_model=CheckoutResponse)
def create_checkout(req: CheckoutRequest, user_id: str = Depends(current_user_id)):
    """Start a purchase; the client redirects to the returned URL."""

    result = service.create_checkout_session(user_id, req.package_id)
    return CheckoutResponse(session_id=result.session_id, url=result.url)


@app.get("/metrics")
def metrics():
    return metrics_response()


@app.get("/health")
def health():
    return {"ok": True}
