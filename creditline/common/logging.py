"""Structured JSON logging with request/event context fields."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from creditline.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
user_id_ctx: ContextVar[str] = ContextVar("user_id", default="")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.event_id = event_id_ctx.get()
        record.user_id = user_id_ctx.get()
        return True


def configure_logging() -> None:
    """Configure root logger once per service process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(event_id)s %(user_id)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


@contextmanager
def log_context(
    *,
    trace_id: str | None = None,
    event_id: str | None = None,
    user_id: str | None = None,
) -> Iterator[None]:
    """Bind correlation ids for the duration of one request/event and restore after."""

    tokens = []
    for ctx, value in ((trace_id_ctx, trace_id), (event_id_ctx, event_id), (user_id_ctx, user_id)):
        if value is not None:
            tokens.append((ctx, ctx.set(value)))
    try:
        yield
    finally:
        for ctx, token in reversed(tokens):
            ctx.reset(token)


logger = logging.getLogger("creditline")
