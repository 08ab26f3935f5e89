"""
ImageAnalyzer Backend: Error Translator
========================================

What:  Maps any exception raised while handling an upload to an HTTP status,
       a stable ErrorKind code and a client-safe message.
How:   A status table keyed by ErrorKind. Application exceptions carry their
       kind; asyncio timeouts count as PROCESSING_TIMEOUT; the framework's
       HTTPException and RequestValidationError get a kind by status;
       everything else is UNKNOWN_ERROR with a generic message.
Who:   The exception handlers registered in main.py.

Status table:
    input rejections, resource limits,
    malformed requests                         → 400
    unknown route / method                     → 404 / 405
    storage errors, UNKNOWN_ERROR              → 500
    SERVICE_UNAVAILABLE                        → 503
    PROCESSING_TIMEOUT                         → 504

Messages of storage and unknown errors are always the generic ones: OS error
text, host paths and exception strings only reach the server log. The
`detail` of framework errors is never returned either, since validation
details echo the submitted input.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from imageanalyzer.exceptions import (
    BatchRejectedError,
    ErrorKind,
    ImageAnalyzerError,
    StorageError,
)

logger = logging.getLogger(__name__)

GENERIC_STORAGE_MESSAGE = "Server configuration issue. Please try again later."
GENERIC_UNKNOWN_MESSAGE = "An unexpected error occurred. Please try again later."
GENERIC_INVALID_REQUEST_MESSAGE = "Invalid request. Check the uploaded files and fields."

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_MIME_TYPE: 400,
    ErrorKind.INVALID_EXTENSION: 400,
    ErrorKind.INVALID_FILENAME_PATH: 400,
    ErrorKind.DANGEROUS_FILENAME: 400,
    ErrorKind.FILENAME_TOO_LONG: 400,
    ErrorKind.NULL_BYTE_FILENAME: 400,
    ErrorKind.MALICIOUS_FILENAME: 400,
    ErrorKind.FILE_TOO_LARGE: 400,
    ErrorKind.TOO_MANY_FILES: 400,
    ErrorKind.NO_FILES: 400,
    ErrorKind.FIELD_TOO_LONG: 400,
    ErrorKind.TOO_MANY_FIELDS: 400,
    ErrorKind.UNEXPECTED_FIELD: 400,
    ErrorKind.UPLOAD_ERROR: 400,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.METHOD_NOT_ALLOWED: 405,
    ErrorKind.DIRECTORY_ERROR: 500,
    ErrorKind.STORAGE_WRITE_ERROR: 500,
    ErrorKind.PATH_OUTSIDE_UPLOAD_DIRECTORY: 500,
    ErrorKind.FILENAME_GENERATION_ERROR: 500,
    ErrorKind.PROCESSING_TIMEOUT: 504,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.UNKNOWN_ERROR: 500,
}

# Framework HTTP errors: kind and client message by status
HTTP_ERRORS: Dict[int, Tuple[ErrorKind, str]] = {
    404: (ErrorKind.NOT_FOUND, "The requested resource was not found."),
    405: (ErrorKind.METHOD_NOT_ALLOWED, "Method not allowed for this endpoint."),
}


@dataclass(frozen=True)
class TranslatedError:
    code: ErrorKind
    status_code: int
    message: str
    details: Optional[Dict[str, Any]] = field(default=None)
    headers: Optional[Dict[str, str]] = field(default=None)


class ErrorTranslator:
    """Total mapping from exceptions to TranslatedError."""

    def translate(self, exc: BaseException) -> TranslatedError:
        if isinstance(exc, asyncio.TimeoutError):
            return TranslatedError(
                code=ErrorKind.PROCESSING_TIMEOUT,
                status_code=STATUS_BY_KIND[ErrorKind.PROCESSING_TIMEOUT],
                message="Image processing took too long. Please try again.",
            )

        if isinstance(exc, RequestValidationError):
            return TranslatedError(
                code=ErrorKind.INVALID_REQUEST,
                status_code=STATUS_BY_KIND[ErrorKind.INVALID_REQUEST],
                message=GENERIC_INVALID_REQUEST_MESSAGE,
            )

        if isinstance(exc, StarletteHTTPException):
            return self._translate_http(exc)

        if not isinstance(exc, ImageAnalyzerError):
            logger.error("Unhandled %s translated to UNKNOWN_ERROR", type(exc).__name__)
            return TranslatedError(
                code=ErrorKind.UNKNOWN_ERROR,
                status_code=500,
                message=GENERIC_UNKNOWN_MESSAGE,
            )

        kind = exc.kind
        status_code = STATUS_BY_KIND.get(kind, 500)

        if isinstance(exc, StorageError):
            return TranslatedError(code=kind, status_code=status_code, message=GENERIC_STORAGE_MESSAGE)

        if kind is ErrorKind.UNKNOWN_ERROR:
            return TranslatedError(code=kind, status_code=status_code, message=GENERIC_UNKNOWN_MESSAGE)

        details = None
        if isinstance(exc, BatchRejectedError):
            details = {"rejected_files": list(exc.rejections)}
        elif exc.context and status_code == 400:
            # Only numeric context (limits, counts) is exposed
            details = {
                key: value
                for key, value in exc.context.items()
                if isinstance(value, (int, float)) and not isinstance(value, bool)
            } or None

        return TranslatedError(code=kind, status_code=status_code, message=exc.message, details=details)

    def _translate_http(self, exc: StarletteHTTPException) -> TranslatedError:
        status_code = exc.status_code
        if status_code in HTTP_ERRORS:
            kind, message = HTTP_ERRORS[status_code]
        elif status_code < 500:
            kind, message = ErrorKind.INVALID_REQUEST, GENERIC_INVALID_REQUEST_MESSAGE
        else:
            kind, message = ErrorKind.UNKNOWN_ERROR, GENERIC_UNKNOWN_MESSAGE
        # Allow on 405, WWW-Authenticate on 401
        return TranslatedError(
            code=kind,
            status_code=status_code,
            message=message,
            headers=getattr(exc, "headers", None),
        )


error_translator = ErrorTranslator()
