"""Mapping of domain errors onto JSON HTTP responses.

Body shape: ``{"detail", "code", "permission"?, "request_id"}``.  Internal
errors never leak their cause; it is logged with the request id instead.
"""

from __future__ import annotations

import logging

from cmms_core.errors import CMMSError, InternalError
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from cmms_api.middleware.request_id import get_request_id

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or get_request_id()


def error_response(request: Request, exc: CMMSError) -> JSONResponse:
    """Render *exc* as a JSON response carrying the request id."""
    body = exc.to_dict()
    body["request_id"] = _request_id(request)
    if isinstance(exc, InternalError):
        logger.error(
            "Internal error on %s %s (request_id=%s): %s",
            request.method,
            request.url.path,
            body["request_id"],
            exc.__cause__ or exc,
            exc_info=exc.__cause__ or exc,
        )
    return JSONResponse(status_code=exc.status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CMMSError)
    async def cmms_error_handler(request: Request, exc: CMMSError) -> JSONResponse:
        return error_response(request, exc)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "code": "INVALID_INPUT", "request_id": _request_id(request)},
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error (request_id=%s): %s", _request_id(request), exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal database error", "code": "INTERNAL", "request_id": _request_id(request)},
        )
