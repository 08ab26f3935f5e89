"""
ImageAnalyzer Backend: Upload Validation Gate
==============================================

What:  Screens every incoming file before any byte reaches the upload root.
How:   An ordered battery of independent checks over the declared MIME type,
       the extension and the literal filename. The first failing check
       decides the single ErrorKind reported for that file.
Who:   IngestionService.screen_batch(), once per file of a batch.
When:  After the multipart body was parsed, before naming and storage.

Check order (first failure wins):
    1. MIME type allow-list                      → INVALID_MIME_TYPE
    2. Extension allow-list (missing is fine)    → INVALID_EXTENSION
    3. "..", "/" or "\\" in the filename          → INVALID_FILENAME_PATH
    4. Executable extension anywhere in the name → DANGEROUS_FILENAME
    5. More than 255 UTF-8 bytes                 → FILENAME_TOO_LONG
    6. NUL byte                                  → NULL_BYTE_FILENAME
    7. Script segment, reserved device name or
       characters illegal on common filesystems  → MALICIOUS_FILENAME

Contract:
    validate() never raises for malformed input. Malformed input is exactly
    what it classifies; the outcome is a ValidationResult.
"""

import logging
from typing import Callable, List, Optional, Tuple

from imageanalyzer.exceptions import ErrorKind
from imageanalyzer.schemas.upload import UploadDescriptor, ValidationResult
from imageanalyzer.services.filename_policy import (
    ALLOWED_EXTENSIONS,
    ALLOWED_MIME_TYPES,
    DANGEROUS_EXTENSIONS,
    FORBIDDEN_CHARACTERS_PATTERN,
    MAX_FILENAME_BYTES,
    RESERVED_NAME_PATTERN,
    SCRIPT_SEGMENT_PATTERN,
    extract_extension,
    is_allowed_extension,
    is_allowed_mime_type,
)

logger = logging.getLogger(__name__)

Check = Callable[[UploadDescriptor], Optional[ValidationResult]]


def _check_mime_type(descriptor: UploadDescriptor) -> Optional[ValidationResult]:
    if is_allowed_mime_type(descriptor.mime_type):
        return None
    return ValidationResult.rejected(
        ErrorKind.INVALID_MIME_TYPE,
        f"Invalid file type: {descriptor.mime_type or 'unknown'}. "
        f"Allowed types: {', '.join(ALLOWED_MIME_TYPES)}",
    )


def _check_extension(descriptor: UploadDescriptor) -> Optional[ValidationResult]:
    ext = extract_extension(descriptor.original_name)
    if not ext or is_allowed_extension(ext):
        return None
    return ValidationResult.rejected(
        ErrorKind.INVALID_EXTENSION,
        f"Invalid file extension: {ext}. "
        f"Allowed extensions: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
    )


def _check_path_characters(descriptor: UploadDescriptor) -> Optional[ValidationResult]:
    name = descriptor.original_name
    if ".." in name or "/" in name or "\\" in name:
        return ValidationResult.rejected(
            ErrorKind.INVALID_FILENAME_PATH,
            "Filename contains invalid path characters",
        )
    return None


def _check_dangerous_extensions(descriptor: UploadDescriptor) -> Optional[ValidationResult]:
    lowered = descriptor.original_name.lower()
    if any(dangerous in lowered for dangerous in DANGEROUS_EXTENSIONS):
        return ValidationResult.rejected(
            ErrorKind.DANGEROUS_FILENAME,
            "Filename contains potentially dangerous extension",
        )
    return None


def _check_length(descriptor: UploadDescriptor) -> Optional[ValidationResult]:
    # Why bytes: the 255 limit is the filesystem's, and it counts encoded bytes
    encoded = descriptor.original_name.encode("utf-8", errors="surrogatepass")
    if len(encoded) > MAX_FILENAME_BYTES:
        return ValidationResult.rejected(
            ErrorKind.FILENAME_TOO_LONG,
            f"Filename too long (maximum {MAX_FILENAME_BYTES} bytes)",
        )
    return None


def _check_null_byte(descriptor: UploadDescriptor) -> Optional[ValidationResult]:
    if "\0" in descriptor.original_name:
        return ValidationResult.rejected(
            ErrorKind.NULL_BYTE_FILENAME,
            "Filename contains null bytes",
        )
    return None


def _check_malicious_patterns(descriptor: UploadDescriptor) -> Optional[ValidationResult]:
    name = descriptor.original_name
    stem = name.split(".", 1)[0]
    if (
        SCRIPT_SEGMENT_PATTERN.search(name)
        or RESERVED_NAME_PATTERN.match(stem)
        or FORBIDDEN_CHARACTERS_PATTERN.search(name)
    ):
        return ValidationResult.rejected(
            ErrorKind.MALICIOUS_FILENAME,
            "Filename contains invalid or dangerous characters",
        )
    return None


class ValidationGate:
    """
    Runs the ordered per-file checks and reports the first failure.

    The checks are plain functions; `CHECKS` fixes their order. Each one is
    total over any string input.
    """

    CHECKS: Tuple[Check, ...] = (
        _check_mime_type,
        _check_extension,
        _check_path_characters,
        _check_dangerous_extensions,
        _check_length,
        _check_null_byte,
        _check_malicious_patterns,
    )

    def validate(self, descriptor: UploadDescriptor) -> ValidationResult:
        """
        Classify one upload as Accepted or Rejected(kind).

        Returns:
            ValidationResult with state ACCEPTED, or REJECTED plus the
            ErrorKind and a client-safe message of the first failing check.
        """
        for check in self.CHECKS:
            result = check(descriptor)
            if result is not None:
                logger.warning(
                    "Upload rejected: filename=%r mime=%r code=%s",
                    descriptor.original_name,
                    descriptor.mime_type,
                    result.error_kind.value,
                )
                return result

        logger.debug("Upload accepted: filename=%r", descriptor.original_name)
        return ValidationResult.accepted()

    def validate_all(self, descriptors: List[UploadDescriptor]) -> List[ValidationResult]:
        return [self.validate(descriptor) for descriptor in descriptors]
