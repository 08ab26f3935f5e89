"""
ImageAnalyzer Backend: Upload Storage Writer
=============================================

What:  Owns the upload root directory and writes accepted files into it.
How:   `ensure_upload_root()` creates the directory on first use (mode 0755,
       tolerant of a concurrent creator) and drops the `.gitkeep` marker.
       `write()` joins the root with a generated storage name, resolves the
       result, checks it stays inside the resolved root and writes the bytes
       with aiofiles in exclusive-create mode.
Who:   IngestionService; the application lifespan calls ensure_upload_root()
       once at startup.
When:  After a descriptor was accepted and named.

Directory layout:
    uploads/
    ├── .gitkeep                                   (marker, never deleted)
    ├── image-1718000000000-<32 hex>.jpg
    └── image-1718000000123-<32 hex>.png

Error handling:
    OS errors become DirectoryError / StorageWriteError. Their messages are
    generic; the host path and the OS error text only go into `context`,
    which is logged and never returned to the client.
"""

import asyncio
import errno
import logging
import os
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from imageanalyzer.config import settings
from imageanalyzer.exceptions import (
    DirectoryError,
    PathOutsideUploadDirectory,
    StorageWriteError,
)
from imageanalyzer.schemas.upload import StoredFile, UploadDescriptor, ValidationState
from imageanalyzer.services.filename_policy import normalize_mime_type

logger = logging.getLogger(__name__)

DIRECTORY_MODE = 0o755
MARKER_FILENAME = ".gitkeep"
MARKER_CONTENT = "# Keep this directory in version control\n"


class StorageWriter:
    """
    Writes validated uploads under a single confined directory.

    The writer keeps one piece of process-wide state: whether the upload
    root was verified. Verification is idempotent, so concurrent first
    writes may both run it without a lock.
    """

    def __init__(self, upload_root: Optional[Path] = None):
        """
        Args:
            upload_root: Override of `settings.upload_root` (used in tests).
        """
        self.upload_root = Path(upload_root or settings.upload_root).resolve()
        self._root_ready = False

    @property
    def root_ready(self) -> bool:
        return self._root_ready

    async def ensure_upload_root(self) -> Path:
        """
        Create the upload root if absent and verify it is writable.

        Check-then-create: `exist_ok=True` absorbs the race where another
        request created the directory between the check and the mkdir.

        Raises:
            DirectoryError: the path exists but is not a directory, cannot be
                created, or is not writable.
        """
        root = self.upload_root
        try:
            if not await aiofiles.os.path.exists(root):
                await aiofiles.os.makedirs(root, mode=DIRECTORY_MODE, exist_ok=True)
                logger.info("Created upload directory")
            if not await aiofiles.os.path.isdir(root):
                raise DirectoryError(context={"path": str(root), "reason": "not a directory"})
            if not os.access(root, os.W_OK | os.X_OK):
                raise DirectoryError(context={"path": str(root), "reason": "not writable"})

            marker = root / MARKER_FILENAME
            if not await aiofiles.os.path.exists(marker):
                async with aiofiles.open(marker, "w") as f:
                    await f.write(MARKER_CONTENT)
        except DirectoryError:
            logger.error("Upload directory check failed")
            raise
        except OSError as e:
            logger.error("Failed to set up upload directory: %s", e.strerror or type(e).__name__)
            raise DirectoryError(context={"path": str(root), "os_error": str(e)})

        self._root_ready = True
        logger.debug("Upload directory verified: %s", root)
        return root

    def resolve_destination(self, storage_name: str) -> Path:
        """
        Resolve `storage_name` under the upload root and enforce containment.

        Raises:
            PathOutsideUploadDirectory: the resolved path is the root itself
                or is not a descendant of the resolved root.
        """
        candidate = self.upload_root / storage_name
        resolved = candidate.resolve()
        if resolved == self.upload_root or not resolved.is_relative_to(self.upload_root):
            logger.error("Containment check failed for a generated storage name")
            raise PathOutsideUploadDirectory(
                context={"storage_name": storage_name, "resolved": str(resolved)},
            )
        return resolved

    async def write(self, storage_name: str, descriptor: UploadDescriptor) -> StoredFile:
        """
        Persist an accepted upload under `storage_name`.

        Returns:
            StoredFile for the written file.

        Raises:
            DirectoryError: the upload root cannot be prepared.
            PathOutsideUploadDirectory: containment check failed; nothing written.
            StorageWriteError: the write itself failed.
        """
        if not self._root_ready:
            await self.ensure_upload_root()

        destination = self.resolve_destination(storage_name)

        opened = False
        try:
            # Why: "xb" fails with EEXIST instead of replacing a file that
            # another request already owns under the same name
            async with aiofiles.open(destination, "xb") as f:
                opened = True
                await f.write(descriptor.content)
        except asyncio.CancelledError:
            # The open may finish in its worker thread after the cancel, so
            # the destination is removed whether or not it was seen as opened
            logger.warning("Write of %s cancelled; discarding", storage_name)
            await asyncio.shield(self._discard_partial(destination))
            raise
        except OSError as e:
            logger.error(
                "Failed to store upload %s: %s",
                storage_name,
                e.strerror or type(e).__name__,
            )
            if opened:
                await self._discard_partial(destination)
            if e.errno in (errno.ENOENT, errno.ENOTDIR):
                self._root_ready = False
                raise DirectoryError(context={"path": str(destination), "os_error": str(e)})
            raise StorageWriteError(context={"path": str(destination), "os_error": str(e)})

        logger.info(
            "File stored: %s (%d bytes, original=%r)",
            storage_name,
            len(descriptor.content),
            descriptor.original_name,
        )
        return StoredFile(
            original_name=descriptor.original_name,
            storage_name=storage_name,
            absolute_path=destination,
            mime_type=normalize_mime_type(descriptor.mime_type),
            size=len(descriptor.content),
            validation_state=ValidationState.ACCEPTED,
        )

    async def _discard_partial(self, path: Path) -> None:
        """Remove a half-written file; the age sweep reclaims it if this fails."""
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove partial upload %s: %s", path.name, e.strerror)
