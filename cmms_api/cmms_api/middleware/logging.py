"""Structured request-logging middleware for the CMMS API."""

from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("cmms_api.access")

# Header names whose values must be masked in log output.
_SENSITIVE_HEADERS: frozenset[str] = frozenset({"authorization", "cookie", "x-api-key"})
_MASK: str = "***"


def _safe_headers(request: Request) -> dict[str, str]:
    """Return a copy of the request headers with sensitive values masked."""
    out: dict[str, str] = {}
    for key, value in request.headers.items():
        if key.lower() in _SENSITIVE_HEADERS:
            out[key] = _MASK
        else:
            out[key] = value
    return out


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code and duration.

    Runs inside :class:`RequestIdMiddleware`, so ``request.state.request_id``
    is always populated.  The resolved tenant is read back from
    ``request.state`` after the inner middleware has run.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.monotonic()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.monotonic() - start) * 1000, 2)
            status_code = response.status_code if response is not None else 500

            principal = getattr(request.state, "principal", None)
            log_payload: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "query": str(request.url.query) if request.url.query else None,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "client": request.client.host if request.client else None,
                "request_id": getattr(request.state, "request_id", ""),
                "tenant_id": getattr(request.state, "tenant_id", "unresolved"),
                "user_id": getattr(principal, "user_id", None),
                "headers": _safe_headers(request),
            }
            if status_code >= 500:
                logger.error("request completed", extra={"request": log_payload})
            elif status_code >= 400:
                logger.warning("request completed", extra={"request": log_payload})
            else:
                logger.info("request completed", extra={"request": log_payload})
