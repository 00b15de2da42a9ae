"""Prometheus metric definitions shared across services."""

from time import perf_counter

from fastapi import FastAPI, Request
from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


credits_posted_total = Counter(
    "credits_posted_total",
    "Ledger transactions appended, by kind",
    ["service", "kind"],
)
debits_rejected_total = Counter(
    "debits_rejected_total",
    "Debits refused because the balance was insufficient",
    ["service"],
)
free_grants_total = Counter("free_grants_total", "Free credit grants issued", ["service"])
webhook_events_total = Counter(
    "webhook_events_total",
    "Webhook deliveries by event type and outcome",
    ["service", "event_type", "outcome"],
)
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Duplicate webhook deliveries short-circuited",
    ["service", "event_type"],
)
checkout_sessions_total = Counter(
    "checkout_sessions_total",
    "Checkout session creation attempts",
    ["service", "result"],
)
secondary_effect_failures_total = Counter(
    "secondary_effect_failures_total",
    "Best-effort side effects that failed after the ledger committed",
    ["service", "effect"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def install_http_metrics(app: FastAPI, service_name: str) -> None:
    """Record request count and latency for every HTTP call on `app`."""

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
