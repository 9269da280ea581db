"""JSON log formatter.

Emits each log record as a single-line JSON object that log aggregators
can index without regex parsing.  Activate with
``API_STRUCTURED_LOGGING=true``.

Output schema per line::

    {
        "timestamp": "2026-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "cmms_api.access",
        "message": "request completed",
        "request_id": "…",        // present inside a request
        "request": { ... },       // present when emitted by RequestLoggingMiddleware
        "exc_info": "Traceback ..."  // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            payload["request_id"] = request_id

        request_data = getattr(record, "request", None)
        if request_data is not None:
            payload["request"] = request_data

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
