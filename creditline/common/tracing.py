"""OpenTelemetry setup helpers used by each FastAPI service."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from creditline.common.config import settings
from creditline.common.logging import logger


def setup_tracing(service_name: str) -> bool:
    """Register an OTLP-exporting tracer provider when an endpoint is configured.

    Returns False (and leaves the no-op default provider in place) when
    `OTEL_EXPORTER_OTLP_ENDPOINT` is empty, which is the local/test default.
    """

    if not settings.otel_exporter_otlp_endpoint:
        logger.info("tracing disabled service=%s", service_name)
        return False
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    return True


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation for request spans."""

    FastAPIInstrumentor.instrument_app(app)


tracer = trace.get_tracer("creditline")
