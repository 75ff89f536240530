"""Shared FastAPI dependencies."""

from __future__ import annotations

import hmac

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from ledger_cache.core.errors import AuthenticationError
from ledger_cache.hydrate.engine import HydrationEngine
from ledger_cache.services import Services

API_KEY_HEADER = "X-API-Key"

_api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_engine(services: Services = Depends(get_services)) -> HydrationEngine:
    return services.engine


def require_api_key(
    provided: str | None = Depends(_api_key_header),
    services: Services = Depends(get_services),
) -> None:
    """Reject the request unless it carries the configured API key; open when none is configured."""
    expected = services.settings.api_key
    if not expected:
        return
    if not provided:
        raise AuthenticationError("missing API key", status_code=401)
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("invalid API key", status_code=403)


__all__ = ["API_KEY_HEADER", "get_services", "get_engine", "require_api_key"]
