"""Caller identity resolution for HTTP endpoints.

Sessions live in the upstream identity layer; it forwards the authenticated
user id in `X-User-Id`. Service-to-service and ops calls carry `X-API-Key`.
"""

import secrets

from fastapi import Header

from creditline.common.config import settings
from creditline.common.errors import AuthError
from creditline.common.logging import user_id_ctx


def enforce_api_key(x_api_key: str | None) -> None:
    """Reject requests that do not provide the configured API key."""

    if not x_api_key or not secrets.compare_digest(x_api_key, settings.api_key):
        raise AuthError("invalid API key")


def current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """FastAPI dependency returning the authenticated user id or raising 401."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthError("missing user identity")
    user_id_ctx.set(user_id)
    return user_id


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """FastAPI dependency form of `enforce_api_key`."""

    enforce_api_key(x_api_key)
