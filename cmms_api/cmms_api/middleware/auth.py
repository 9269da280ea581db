"""Bearer token authentication middleware."""

from __future__ import annotations

import logging
from typing import Any

from cmms_core.errors import UnauthenticatedError
from cmms_core.rbac.guard import Principal
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from cmms_api.errors import error_response
from cmms_api.security import TokenExpiredError, TokenManager

logger = logging.getLogger(__name__)

# Paths that do not require authentication.
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/api/v1/auth/login",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
    }
)

_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
)


def is_public_path(path: str) -> bool:
    """Return ``True`` if the path should bypass authentication."""
    if path in _PUBLIC_PATHS:
        return True
    return any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Validate ``Authorization: Bearer <token>`` and attach the principal.

    On success ``request.state.principal`` holds a :class:`Principal`
    built from the token claims.  Failures are answered directly with a
    401 JSON body; an expired token carries the ``TOKEN_EXPIRED`` code.
    """

    def __init__(self, app: Any, *, token_manager: TokenManager) -> None:
        super().__init__(app)
        self._token_manager = token_manager

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.principal = None
        if request.method == "OPTIONS" or is_public_path(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return error_response(request, UnauthenticatedError("Missing Authorization header"))

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return error_response(
                request,
                UnauthenticatedError("Authorization header must use Bearer scheme"),
            )

        try:
            claims = self._token_manager.validate_token(parts[1].strip())
        except TokenExpiredError:
            return error_response(request, UnauthenticatedError("Token has expired", code="TOKEN_EXPIRED"))
        except PermissionError as exc:
            logger.info("Rejected bearer token: %s", exc)
            return error_response(request, UnauthenticatedError(f"Invalid token: {exc}"))

        request.state.principal = Principal(
            user_id=claims.sub,
            role=claims.role,
            tenant_id=claims.tenant_id,
            email=claims.email,
        )
        return await call_next(request)
