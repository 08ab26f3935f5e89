"""
ImageAnalyzer Backend: Ingestion Service (Upload Orchestrator)
===============================================================

What:  Runs one upload request end to end: screen → name → store → consume →
       delete.
How:   Composes ValidationGate, SecureNameGenerator, StorageWriter and
       LifecycleManager. The stored batch lives inside an async context
       manager whose exit always runs cleanup.
Who:   Called by the analyze route; built once per application in create_app().
When:  For every POST /api/analyze.

Orchestration Flow:
    ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌──────────┐
    │  Screen  │───▶│  Name    │───▶│  Store   │───▶│ Consume  │───▶│  Delete  │
    │ (batch)  │    │ (per f.) │    │ (concur.)│    │ (timeout)│    │ (always) │
    └──────────┘    └──────────┘    └──────────┘    └──────────┘    └──────────┘

    Screening rejects the whole batch before any byte is written.
    A failed write deletes the files already written for the batch.
    Delete runs on success, on error, on timeout and on cancellation.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Tuple

from imageanalyzer.config import settings
from imageanalyzer.exceptions import (
    BatchRejectedError,
    ConsumerUnavailableError,
    ErrorKind,
    ProcessingTimeoutError,
    ResourceLimitError,
)
from imageanalyzer.schemas.upload import StoredFile, UploadDescriptor
from imageanalyzer.services.consumer import ImageConsumer
from imageanalyzer.services.filename_policy import extract_extension
from imageanalyzer.services.lifecycle import BatchState, IngestedBatch, LifecycleManager
from imageanalyzer.services.naming import SecureNameGenerator
from imageanalyzer.services.storage import StorageWriter
from imageanalyzer.services.validation import ValidationGate

logger = logging.getLogger(__name__)


class IngestionService:
    """
    Business logic layer for image uploads.

    Responsibilities:
        - screen_batch(): batch limits plus per-file validation, all or nothing
        - store_batch():  concurrent writes with rollback on partial failure
        - ingest():       scope of a stored batch, cleanup on exit
        - process():      the full request workflow with a consumer timeout

    Limits default to the values in `settings`; tests pass their own.
    """

    def __init__(
        self,
        gate: Optional[ValidationGate] = None,
        namer: Optional[SecureNameGenerator] = None,
        writer: Optional[StorageWriter] = None,
        lifecycle: Optional[LifecycleManager] = None,
        max_files: Optional[int] = None,
        max_file_size: Optional[int] = None,
        max_prompt_length: Optional[int] = None,
    ):
        self.gate = gate or ValidationGate()
        self.namer = namer or SecureNameGenerator()
        self.writer = writer or StorageWriter()
        self.lifecycle = lifecycle or LifecycleManager(upload_root=self.writer.upload_root)
        self.max_files = max_files or settings.max_files
        self.max_file_size = max_file_size or settings.max_file_size
        self.max_prompt_length = max_prompt_length or settings.max_prompt_length

    # ── Screening ─────────────────────────────────────────────────────────

    def screen_batch(self, descriptors: List[UploadDescriptor], prompt: str = "") -> None:
        """
        Refuse the request unless every file and field is acceptable.

        Raises:
            ResourceLimitError: NO_FILES, TOO_MANY_FILES or FIELD_TOO_LONG.
            BatchRejectedError: at least one file failed validation or was
                too large; lists every rejected file.
        """
        if not descriptors:
            raise ResourceLimitError(
                ErrorKind.NO_FILES,
                "No images provided. Please upload at least one image.",
            )

        if len(descriptors) > self.max_files:
            raise ResourceLimitError(
                ErrorKind.TOO_MANY_FILES,
                f"Too many files. Maximum is {self.max_files} files.",
                context={"max_files": self.max_files, "received": len(descriptors)},
            )

        if prompt and len(prompt) > self.max_prompt_length:
            raise ResourceLimitError(
                ErrorKind.FIELD_TOO_LONG,
                f"Prompt too long. Maximum is {self.max_prompt_length} characters.",
                context={"max_prompt_length": self.max_prompt_length},
            )

        rejections = []
        results = self.gate.validate_all(descriptors)
        for index, (descriptor, result) in enumerate(zip(descriptors, results)):
            if not result.is_accepted:
                kind, message = result.error_kind, result.message
            elif descriptor.size > self.max_file_size:
                kind = ErrorKind.FILE_TOO_LARGE
                message = f"File too large. Maximum size is {self.max_file_size // (1024 * 1024)}MB."
            else:
                continue
            rejections.append({
                "index": index,
                "filename": descriptor.original_name,
                "code": kind.value,
                "message": message,
            })

        if rejections:
            logger.warning(
                "Batch rejected: %d of %d file(s) failed screening",
                len(rejections),
                len(descriptors),
            )
            raise BatchRejectedError(rejections)

    # ── Storage ───────────────────────────────────────────────────────────

    async def _store_one(self, descriptor: UploadDescriptor, written: List[StoredFile]) -> StoredFile:
        storage_name = self.namer.generate(
            descriptor.mime_type,
            extract_extension(descriptor.original_name),
        )
        stored = await self.writer.write(storage_name, descriptor)
        written.append(stored)
        return stored

    async def store_batch(self, descriptors: List[UploadDescriptor]) -> List[StoredFile]:
        """
        Name and write every descriptor concurrently.

        All or nothing: when any write fails, or the request is cancelled
        while writes are in flight, the files already written for this batch
        are deleted and the error is re-raised.
        """
        # Filled as each write completes, so a cancelled gather still knows
        # which files reached the disk
        written: List[StoredFile] = []
        try:
            results = await asyncio.gather(
                *(self._store_one(d, written) for d in descriptors),
                return_exceptions=True,
            )
        except BaseException:
            logger.warning(
                "Storing batch interrupted after %d of %d file(s); rolling back",
                len(written),
                len(descriptors),
            )
            await asyncio.shield(self.lifecycle.cleanup_batch(list(written)))
            raise

        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            logger.error(
                "Storing batch failed for %d of %d file(s); rolling back",
                len(errors),
                len(descriptors),
            )
            # Why: shielded so a cancel arriving during rollback cannot leave
            # half the batch on disk
            await asyncio.shield(self.lifecycle.cleanup_batch(list(written)))
            raise errors[0]

        # Upload order, not completion order
        return [r for r in results if isinstance(r, StoredFile)]

    @asynccontextmanager
    async def ingest(self, descriptors: List[UploadDescriptor]) -> AsyncIterator[IngestedBatch]:
        """
        Store a screened batch for the duration of the `async with` block.

        The descriptors must already have passed screen_batch(). Whatever
        happens inside the block, including cancellation, the batch is
        deleted on exit.
        """
        batch = IngestedBatch(await self.store_batch(descriptors))
        try:
            yield batch
        except BaseException:
            if batch.state is BatchState.STORED:
                batch.transition(BatchState.CONSUMED_WITH_ERROR)
            raise
        else:
            if batch.state is BatchState.STORED:
                batch.transition(BatchState.CONSUMED_SUCCESSFULLY)
        finally:
            # Why: a client disconnect cancels this task; the shield lets the
            # deletion finish even if a second cancel lands while it runs
            await asyncio.shield(self.lifecycle.release(batch))

    # ── Full Workflow ─────────────────────────────────────────────────────

    async def process(
        self,
        descriptors: List[UploadDescriptor],
        consumer: Optional[ImageConsumer],
        prompt: str = "",
        timeout: Optional[float] = None,
    ) -> Tuple[str, IngestedBatch]:
        """
        Screen, store, consume and delete one request's files.

        Args:
            descriptors: Files of the request, in upload order.
            consumer: Downstream analysis; None means it is not configured.
            prompt: Optional custom prompt.
            timeout: Seconds the consumer may take (settings default).

        Returns:
            (analysis text, the batch in its final state)

        Raises:
            ResourceLimitError / BatchRejectedError: screening failed (400).
            ConsumerUnavailableError: no consumer configured (503).
            StorageError: a write failed (500).
            ProcessingTimeoutError: the consumer exceeded the timeout (504).
        """
        self.screen_batch(descriptors, prompt)

        if consumer is None:
            raise ConsumerUnavailableError()

        timeout = timeout or settings.processing_timeout_seconds

        async with self.ingest(descriptors) as batch:
            logger.info("Processing %d stored file(s)", len(batch.files))
            try:
                analysis = await asyncio.wait_for(consumer.consume(batch.files, prompt), timeout)
            except asyncio.TimeoutError:
                logger.error("Image consumer timed out after %ss", timeout)
                raise ProcessingTimeoutError(timeout_seconds=timeout)

        return analysis, batch
