"""Startup-time helpers for safe config logging."""

import os

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from creditline.common.logging import logger

SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN")


def _safe_env(name: str) -> str:
    """Return env value with redaction for secrets and DSN passwords."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>" if value else "<empty>"
    if name.endswith("_DSN"):
        try:
            return make_url(value).render_as_string(hide_password=True)
        except ArgumentError:
            return "<unparseable>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)
