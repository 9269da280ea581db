"""Request correlation.

Every request carries a ``request_id``: the inbound ``X-Request-ID`` header
when it is safe to echo (at most 128 characters from ``[A-Za-z0-9._-:]``),
otherwise a fresh UUID-4.  The id is stored on a context variable and on
``request.state`` and returned in the ``X-Request-ID`` response header.
"""

from __future__ import annotations

import contextvars
import logging
import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_MAX_REQUEST_ID_LENGTH = 128
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._\-:]+$")

_request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")


def get_request_id() -> str:
    """Return the current request id (or empty string outside a request)."""
    return _request_id_var.get()


def sanitize_request_id(raw: str | None) -> str | None:
    """Return *raw* stripped if it is a safe id, else ``None``."""
    if not raw:
        return None
    value = raw.strip()
    if not value or len(value) > _MAX_REQUEST_ID_LENGTH:
        return None
    if not _REQUEST_ID_RE.match(value):
        return None
    return value


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign a request id and echo it on the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        inbound = request.headers.get(REQUEST_ID_HEADER)
        request_id = sanitize_request_id(inbound)
        if request_id is None:
            if inbound:
                logger.debug("Discarding unsafe inbound request id")
            request_id = str(uuid.uuid4())

        token = _request_id_var.set(request_id)
        request.state.request_id = request_id
        try:
            response = await call_next(request)
        finally:
            _request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestIdLoggingFilter(logging.Filter):
    """Inject ``request_id`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_var.get()  # type: ignore[attr-defined]
        return True
