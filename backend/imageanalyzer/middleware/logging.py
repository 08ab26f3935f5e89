"""
ImageAnalyzer Backend: Request Logging Middleware
==================================================

What:  One access-log line per HTTP request: method, path, status, declared
       upload size, error code, duration and client address.
How:   Measures from middleware entry to response return; the level follows
       the status class (5xx ERROR, 4xx WARNING, else INFO). The error code
       is the one the exception handlers in main.py put on request.state.
Who:   Applied to every request via Starlette middleware, inside
       RequestIDMiddleware.

Never logged: request bodies, file contents, prompts, uploaded filenames.
Rejected filenames are logged by the ValidationGate with %r quoting.

Example lines:
    POST /api/analyze 200 in=482133B 1834.2ms from 10.0.0.7
    POST /api/analyze 400 in=2210B code=INVALID_FILENAME_PATH 3.1ms from 10.0.0.7
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from imageanalyzer.middleware.request_id import request_id_var

logger = logging.getLogger("imageanalyzer.access")

# Why: health checks hit these every few seconds and would bury the upload traffic
QUIET_PATHS = frozenset({"/health"})


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        declared = request.headers.get("content-length")
        size = f" in={declared}B" if declared and declared.isdigit() else ""

        try:
            response = await call_next(request)
        except BaseException as e:
            # Client disconnects surface here as CancelledError
            logger.warning(
                "%s %s aborted%s (%s) after %.1fms from %s",
                request.method,
                path,
                size,
                type(e).__name__,
                (time.perf_counter() - started) * 1000,
                client_ip,
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        status = response.status_code
        error_code = getattr(request.state, "error_code", None)
        code = f" code={error_code}" if error_code else ""

        logger.log(
            _level_for(status),
            "%s %s %d%s%s %.1fms from %s",
            request.method,
            path,
            status,
            size,
            code,
            duration_ms,
            client_ip,
            extra={
                "request_id": request_id_var.get("") or "-",
                "status": status,
                "error_code": error_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response
