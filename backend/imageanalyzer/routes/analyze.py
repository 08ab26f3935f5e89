"""
ImageAnalyzer Backend: Analyze Route Handlers
==============================================

What:  POST /api/analyze accepts a batch of images plus an optional prompt;
       GET /api/analyze/config publishes the upload limits.
How:   The handler parses the multipart body itself, with the file, field
       and field-size limits from settings, turns each "images" part into an
       UploadDescriptor and hands the batch to IngestionService.process().
       Every error is raised and formatted by the exception handlers in
       main.py.
Who:   Called by the frontend upload form.

Request Flow:
    1. Client sends multipart/form-data with "images" parts and "prompt"
    2. The parser stops at the first file or field over its limit
    3. Each image part is read up to max_file_size + 1 bytes
    4. IngestionService screens, stores, consumes and deletes the batch
    5. Return 200 with the analysis and per-file metadata

By the time the response is sent, no file of the batch is left on disk.
"""

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from imageanalyzer.config import settings
from imageanalyzer.exceptions import (
    ErrorKind,
    ImageAnalyzerError,
    MalformedUploadError,
    ResourceLimitError,
)
from imageanalyzer.schemas.upload import (
    AnalysisMetadata,
    AnalyzeResponse,
    ErrorResponse,
    ProcessedFileInfo,
    UploadConfigResponse,
    UploadDescriptor,
)
from imageanalyzer.services.consumer import ImageConsumer
from imageanalyzer.services.filename_policy import ALLOWED_EXTENSIONS, ALLOWED_MIME_TYPES
from imageanalyzer.services.ingestion_service import IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Analyze"])

IMAGES_FIELD = "images"
PROMPT_FIELD = "prompt"


# ── Dependencies ──────────────────────────────────────────────────────────

def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def get_consumer(request: Request) -> Optional[ImageConsumer]:
    return request.app.state.consumer


# ── Multipart Parsing ─────────────────────────────────────────────────────

def _parser_error(detail: str, max_files: int) -> ImageAnalyzerError:
    """Map a Starlette multipart refusal to a stable error kind."""
    if detail.startswith("Too many files"):
        return ResourceLimitError(
            ErrorKind.TOO_MANY_FILES,
            f"Too many files. Maximum is {max_files} files.",
            context={"max_files": max_files},
        )
    if detail.startswith("Too many fields"):
        return ResourceLimitError(
            ErrorKind.TOO_MANY_FIELDS,
            f"Too many form fields. Maximum is {settings.max_form_fields} fields.",
            context={"max_form_fields": settings.max_form_fields},
        )
    if "exceeded maximum size" in detail:
        return ResourceLimitError(
            ErrorKind.FIELD_TOO_LONG,
            "Form field too large.",
            context={"max_field_size": settings.max_field_size},
        )
    return MalformedUploadError(context={"parser": detail})


async def _read_form(request: Request, max_files: int) -> FormData:
    # Why: parsed here rather than through File()/Form() parameters, which
    # run Starlette's defaults of 1000 files and 1000 fields, so an oversized
    # request is refused before it is spooled
    try:
        return await request.form(
            max_files=max_files,
            max_fields=settings.max_form_fields,
            max_part_size=settings.max_field_size,
        )
    except StarletteHTTPException as e:
        logger.warning("Multipart body refused: %s", e.detail)
        raise _parser_error(str(e.detail), max_files) from e


def _split_form(form: FormData) -> Tuple[List[UploadFile], str]:
    """Pick the image parts and the prompt out of a parsed form."""
    images: List[UploadFile] = []
    prompt = ""
    for name, value in form.multi_items():
        is_file = isinstance(value, UploadFile)
        if name == IMAGES_FIELD:
            if not is_file:
                raise MalformedUploadError(
                    'Expected an image file in the "images" field',
                    context={"field": name},
                )
            images.append(value)
        elif is_file:
            raise MalformedUploadError(
                'Unexpected file field. Please use the "images" field for file uploads',
                context={"field": name},
                kind=ErrorKind.UNEXPECTED_FIELD,
            )
        elif name == PROMPT_FIELD:
            prompt = value
    return images, prompt


async def _to_descriptor(upload: UploadFile, read_limit: int) -> UploadDescriptor:
    # Oversized parts are refused during screening; reading one byte past the
    # limit is enough to know
    content = await upload.read(read_limit + 1)
    size = upload.size if upload.size is not None else len(content)
    return UploadDescriptor(
        original_name=upload.filename or "",
        mime_type=upload.content_type or "",
        size=size,
        content=content,
    )


_MULTIPART_BODY = {
    "requestBody": {
        "required": True,
        "content": {
            "multipart/form-data": {
                "schema": {
                    "type": "object",
                    "properties": {
                        IMAGES_FIELD: {
                            "type": "array",
                            "items": {"type": "string", "format": "binary"},
                            "description": "Image files (JPEG, PNG, GIF, WebP)",
                        },
                        PROMPT_FIELD: {
                            "type": "string",
                            "description": "Optional custom analysis prompt",
                        },
                    },
                    "required": [IMAGES_FIELD],
                },
            },
        },
    },
}


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    responses={
        200: {"description": "Images analysed", "model": AnalyzeResponse},
        400: {"description": "Invalid file, name, form or limit exceeded", "model": ErrorResponse},
        500: {"description": "Upload could not be stored", "model": ErrorResponse},
        503: {"description": "Analysis service not available", "model": ErrorResponse},
        504: {"description": "Analysis timed out", "model": ErrorResponse},
    },
    summary="Analyse one or more images",
    description=(
        "Upload up to MAX_FILES images (JPEG, PNG, GIF or WebP) with an optional "
        "custom prompt. Files are stored under generated names for the duration "
        "of the analysis and deleted before the response is returned."
    ),
    openapi_extra=_MULTIPART_BODY,
)
async def analyze_images(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
    consumer: Optional[ImageConsumer] = Depends(get_consumer),
) -> AnalyzeResponse:
    started = time.perf_counter()

    form = await _read_form(request, service.max_files)
    try:
        images, prompt = _split_form(form)
        descriptors = [await _to_descriptor(image, service.max_file_size) for image in images]
    finally:
        await form.close()

    logger.info(
        "Received analyze request: %d file(s), %d bytes, prompt=%s",
        len(descriptors),
        sum(d.size for d in descriptors),
        "custom" if prompt else "default",
    )

    analysis, batch = await service.process(descriptors, consumer, prompt=prompt)

    processing_time_ms = int((time.perf_counter() - started) * 1000)
    logger.info(
        "Analysis completed in %dms for %d file(s), batch %s",
        processing_time_ms,
        len(batch.files),
        batch.state.value,
    )

    return AnalyzeResponse(
        analysis=analysis,
        metadata=AnalysisMetadata(
            processed_images=len(batch.files),
            processing_time_ms=processing_time_ms,
            files=[
                ProcessedFileInfo(
                    original_name=stored.original_name,
                    mime_type=stored.mime_type,
                    size=stored.size,
                )
                for stored in batch.files
            ],
            custom_prompt=prompt or None,
            timestamp=datetime.now(timezone.utc),
        ),
    )


@router.get(
    "/analyze/config",
    response_model=UploadConfigResponse,
    summary="Upload limits and accepted formats",
)
async def get_upload_config(
    service: IngestionService = Depends(get_ingestion_service),
) -> UploadConfigResponse:
    return UploadConfigResponse(
        max_file_size=service.max_file_size,
        max_file_size_mb=round(service.max_file_size / (1024 * 1024)),
        max_files=service.max_files,
        max_prompt_length=service.max_prompt_length,
        allowed_mime_types=list(ALLOWED_MIME_TYPES),
        allowed_extensions=sorted(ALLOWED_EXTENSIONS),
    )
