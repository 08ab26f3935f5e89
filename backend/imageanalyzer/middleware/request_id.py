"""
ImageAnalyzer Backend: Request ID Middleware
=============================================

What:  Assigns a correlation ID to each request and returns it in the
       X-Request-ID response header.
How:   Accepts the client's X-Request-ID when it is a short token of letters,
       digits and dashes; otherwise generates an 8-character UUID prefix.
       The ID is stored in a ContextVar, in request.state, and is injected
       into every log record by RequestIDFilter.
Who:   Applied to every request via Starlette middleware.

A client-supplied header is never logged or echoed unless it matches
^[A-Za-z0-9-]{1,64}$, so it cannot forge log lines or response headers.
"""

import logging
import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,64}$")

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def sanitize_request_id(value: str) -> str:
    """Returns `value` if it is an acceptable ID, else a fresh short UUID."""
    if value and REQUEST_ID_PATTERN.fullmatch(value):
        return value
    return str(uuid.uuid4())[:8]


class RequestIDFilter(logging.Filter):
    """Adds `request_id` to every record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("") or "-"
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that assigns a unique ID to each request for tracing.

    Behavior:
        1. Use the client's X-Request-ID if it passes sanitize_request_id()
        2. Otherwise generate a new short UUID
        3. Store it in the ContextVar and in request.state
        4. Add it to the response headers
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = sanitize_request_id(request.headers.get(REQUEST_ID_HEADER, ""))

        # Why no reset after the response: the catch-all exception handler runs
        # outside this middleware and still reads the ID
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
