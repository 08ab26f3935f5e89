"""
ImageAnalyzer Backend: Error Taxonomy and Exception Hierarchy
==============================================================

What:  The stable `ErrorKind` codes and the exceptions that carry them.
How:   Every application exception stores a client-safe `message`, an
       internal `context` dict (logged, never returned) and an `ErrorKind`.
       The ErrorTranslator turns any exception into an HTTP status, a code
       and a message; unknown exceptions fall back to UNKNOWN_ERROR.
Who:   Raised by StorageWriter, SecureNameGenerator and IngestionService;
       translated by the exception handlers registered in main.py.

Expected per-file rejections are NOT exceptions: ValidationGate returns a
ValidationResult. Only when a whole batch has to be refused does the
IngestionService raise BatchRejectedError / ResourceLimitError.

Exception Hierarchy:
    ImageAnalyzerError (base)                     → UNKNOWN_ERROR
    ├── UploadRejectedError                       → 400 (per-file kind)
    │   └── BatchRejectedError                    → 400 (first file's kind)
    ├── ResourceLimitError                        → 400 (TOO_MANY_FILES, ...)
    ├── MalformedUploadError                      → 400 (UPLOAD_ERROR, ...)
    ├── StorageError                              → 500
    │   ├── DirectoryError                        → DIRECTORY_ERROR
    │   ├── StorageWriteError                     → STORAGE_WRITE_ERROR
    │   ├── PathOutsideUploadDirectory            → PATH_OUTSIDE_UPLOAD_DIRECTORY
    │   └── FilenameGenerationError               → FILENAME_GENERATION_ERROR
    ├── ProcessingTimeoutError                    → 504
    └── ConsumerUnavailableError                  → 503
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Stable, enumerable failure codes consumed by the HTTP layer."""

    # Input rejection (client's fault)
    INVALID_MIME_TYPE = "INVALID_MIME_TYPE"
    INVALID_EXTENSION = "INVALID_EXTENSION"
    INVALID_FILENAME_PATH = "INVALID_FILENAME_PATH"
    DANGEROUS_FILENAME = "DANGEROUS_FILENAME"
    FILENAME_TOO_LONG = "FILENAME_TOO_LONG"
    NULL_BYTE_FILENAME = "NULL_BYTE_FILENAME"
    MALICIOUS_FILENAME = "MALICIOUS_FILENAME"

    # Resource limits
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    TOO_MANY_FILES = "TOO_MANY_FILES"
    NO_FILES = "NO_FILES"
    FIELD_TOO_LONG = "FIELD_TOO_LONG"
    TOO_MANY_FIELDS = "TOO_MANY_FIELDS"

    # Malformed requests
    UNEXPECTED_FIELD = "UNEXPECTED_FIELD"
    UPLOAD_ERROR = "UPLOAD_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"

    # Storage
    DIRECTORY_ERROR = "DIRECTORY_ERROR"
    STORAGE_WRITE_ERROR = "STORAGE_WRITE_ERROR"
    PATH_OUTSIDE_UPLOAD_DIRECTORY = "PATH_OUTSIDE_UPLOAD_DIRECTORY"
    FILENAME_GENERATION_ERROR = "FILENAME_GENERATION_ERROR"

    # Downstream processing
    PROCESSING_TIMEOUT = "PROCESSING_TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ImageAnalyzerError(Exception):
    """
    Base exception for all ImageAnalyzer application errors.

    Attributes:
        message:  Client-safe description (may be returned in API responses)
        context:  Debug information (logged server-side, NEVER returned)
        kind:     ErrorKind used by the ErrorTranslator
    """

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
        kind: Optional[ErrorKind] = None,
    ):
        self.message = message
        self.context = context or {}
        if kind is not None:
            self.kind = kind
        super().__init__(self.message)


class UploadRejectedError(ImageAnalyzerError):
    """
    A single uploaded file failed one of the ValidationGate checks.

    HTTP: 400 Bad Request. The message names the failed check only; it never
    echoes the resolved storage path.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str = "Invalid file format or name",
        filename: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if filename is not None:
            ctx["filename"] = filename
        super().__init__(message=message, context=ctx, kind=kind)
        self.filename = filename


class BatchRejectedError(UploadRejectedError):
    """
    One or more files of a batch were rejected, so the batch is refused.

    `rejections` holds one entry per rejected file:
    {"index": int, "filename": str, "code": str, "message": str}.
    The exception's kind is the kind of the first rejected file.
    """

    def __init__(self, rejections: List[Dict[str, Any]]):
        first = rejections[0]
        super().__init__(
            kind=ErrorKind(first["code"]),
            message=first["message"],
            filename=first["filename"],
            context={"rejected_count": len(rejections)},
        )
        self.rejections = rejections


class ResourceLimitError(ImageAnalyzerError):
    """
    A batch-level limit was exceeded (file count, file size, field length).

    HTTP: 400 Bad Request.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context, kind=kind)


class MalformedUploadError(ImageAnalyzerError):
    """
    The multipart body could not be read as an upload request: a file under
    a field other than "images", a text value where a file was expected, or
    a body the parser refused.

    HTTP: 400 Bad Request. Parser messages stay in `context`.
    """

    kind = ErrorKind.UPLOAD_ERROR

    def __init__(
        self,
        message: str = "The upload request could not be read",
        context: Optional[Dict[str, Any]] = None,
        kind: Optional[ErrorKind] = None,
    ):
        super().__init__(message=message, context=context, kind=kind)


class StorageError(ImageAnalyzerError):
    """
    Base for filesystem failures during ingestion.

    HTTP: 500. The client only ever sees a generic message; `context` keeps
    the OS error and the path for the server log.
    """

    kind = ErrorKind.STORAGE_WRITE_ERROR

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DirectoryError(StorageError):
    """Upload root is missing, not a directory, or not writable."""

    kind = ErrorKind.DIRECTORY_ERROR

    def __init__(
        self,
        message: str = "Upload directory is not accessible",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StorageWriteError(StorageError):
    """Writing the file bytes failed (ENOSPC, EACCES, EEXIST, ...)."""

    kind = ErrorKind.STORAGE_WRITE_ERROR

    def __init__(
        self,
        message: str = "Failed to save uploaded image",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PathOutsideUploadDirectory(StorageError):
    """The resolved destination escaped the confined upload root."""

    kind = ErrorKind.PATH_OUTSIDE_UPLOAD_DIRECTORY

    def __init__(
        self,
        message: str = "Generated path outside upload directory",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FilenameGenerationError(StorageError):
    """A generated storage name failed the safe-alphabet post-condition."""

    kind = ErrorKind.FILENAME_GENERATION_ERROR

    def __init__(
        self,
        message: str = "Could not generate secure filename",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ProcessingTimeoutError(ImageAnalyzerError):
    """The downstream image consumer did not finish in time. HTTP: 504."""

    kind = ErrorKind.PROCESSING_TIMEOUT

    def __init__(
        self,
        timeout_seconds: float,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["timeout_seconds"] = timeout_seconds
        super().__init__(
            message="Image processing took too long. Please try again.",
            context=ctx,
        )
        self.timeout_seconds = timeout_seconds


class ConsumerUnavailableError(ImageAnalyzerError):
    """No downstream image consumer is configured. HTTP: 503."""

    kind = ErrorKind.SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str = "Image analysis service is not available",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
