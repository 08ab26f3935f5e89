"""
ImageAnalyzer Backend: Secure Storage Name Generator
=====================================================

What:  Produces the on-disk name of an accepted upload.
How:   "image-" + epoch milliseconds + "-" + 16 random bytes (hex) + ext.
       The extension is the client's one when it is allow-listed, else it is
       derived from the validated MIME type (".jpg" fallback).
Who:   IngestionService, once per accepted file, before StorageWriter.

The result is re-checked against ^[A-Za-z0-9._-]+$. A name outside that
alphabet raises FilenameGenerationError and is never written.
"""

import logging
import secrets
import time
from typing import Callable, Optional

from imageanalyzer.exceptions import FilenameGenerationError
from imageanalyzer.services.filename_policy import (
    is_allowed_extension,
    is_safe_storage_name,
    mime_to_extension,
)

logger = logging.getLogger(__name__)

NAME_PREFIX = "image"
TOKEN_BYTES = 16


class SecureNameGenerator:
    """
    Generates unguessable, collision-resistant storage names.

    `clock` and `token_factory` are injectable for tests; production uses
    wall-clock milliseconds and `secrets.token_hex`.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], int]] = None,
        token_factory: Optional[Callable[[int], str]] = None,
    ):
        self._clock = clock or (lambda: time.time_ns() // 1_000_000)
        self._token_factory = token_factory or secrets.token_hex

    def generate(self, mime_type: str, original_extension: Optional[str] = None) -> str:
        """
        Build a storage name for a validated upload.

        Args:
            mime_type: The validated MIME type of the upload.
            original_extension: Extension taken from the client filename; may
                be empty, missing, or not allow-listed.

        Raises:
            FilenameGenerationError: the generated name failed the
                safe-alphabet post-condition.
        """
        ext = (original_extension or "").lower()
        if not is_allowed_extension(ext):
            ext = mime_to_extension(mime_type)

        # Why both: the timestamp keeps names sortable by arrival, the 128-bit
        # token makes them unguessable and unique within one millisecond
        token = self._token_factory(TOKEN_BYTES)
        timestamp = self._clock()
        name = f"{NAME_PREFIX}-{timestamp}-{token}{ext}"

        if not is_safe_storage_name(name):
            logger.error("Generated storage name failed the safe-alphabet check")
            raise FilenameGenerationError(context={"extension": ext})

        logger.debug("Generated storage name %s", name)
        return name
