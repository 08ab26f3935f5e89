"""
ImageAnalyzer Backend: FastAPI Application Factory
===================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the ingestion components, stores them on
       app.state, registers middleware, exception handlers and routes.
Who:   uvicorn (`uvicorn imageanalyzer.main:app`) and the test suite.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware Chain:                                  │
    │  ┌──────────┐ ┌──────────┐ ┌──────┐ ┌──────┐        │
    │  │  Req ID  │→│ Logging  │→│ GZip │→│ CORS │        │
    │  └──────────┘ └──────────┘ └──────┘ └──────┘        │
    │                                                     │
    │  Routes:                                            │
    │  ┌───────────────────┐ ┌─────────────┐ ┌─────────┐  │
    │  │ POST /api/analyze │ │ GET config  │ │ /health │  │
    │  └───────────────────┘ └─────────────┘ └─────────┘  │
    │                                                     │
    │  Exception Handlers (via ErrorTranslator):          │
    │  ┌──────────────────────────────────────────────┐   │
    │  │ input→400 │ storage→500 │ 503 │ timeout→504  │   │
    │  └──────────────────────────────────────────────┘   │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging
    2. Create and verify the upload directory
    3. Wipe leftovers of a previous run (WIPE_UPLOADS_ON_STARTUP)
    4. Start the periodic age sweep

    Shutdown:
    1. Stop the age sweep
    2. Wipe the upload directory (WIPE_UPLOADS_ON_SHUTDOWN)
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from imageanalyzer import __version__
from imageanalyzer.config import settings
from imageanalyzer.exceptions import ImageAnalyzerError, StorageError
from imageanalyzer.middleware.logging import RequestLoggingMiddleware
from imageanalyzer.middleware.request_id import (
    RequestIDFilter,
    RequestIDMiddleware,
    request_id_var,
)
from imageanalyzer.routes import analyze, health
from imageanalyzer.schemas.upload import ErrorResponse
from imageanalyzer.services.consumer import ImageConsumer
from imageanalyzer.services.error_translator import error_translator
from imageanalyzer.services.ingestion_service import IngestionService
from imageanalyzer.services.lifecycle import LifecycleManager, PeriodicSweeper
from imageanalyzer.services.storage import StorageWriter

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure stdout logging for the whole application.

    Every record carries the request ID of the request it was emitted in
    ("-" outside a request), injected by RequestIDFilter on the handler.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Why: RequestLoggingMiddleware writes the access line; multipart logs
    # every parsed part at DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Prepare the upload directory and run the age sweep for the app's lifetime.

    A DirectoryError at startup is fatal: the server must not accept uploads
    it cannot store.
    """
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("ImageAnalyzer Backend starting up...")

    writer: StorageWriter = app.state.storage_writer
    lifecycle: LifecycleManager = app.state.lifecycle
    sweeper: PeriodicSweeper = app.state.sweeper

    await writer.ensure_upload_root()
    if settings.wipe_uploads_on_startup:
        removed = await lifecycle.wipe_all()
        if removed:
            logger.info("Removed %d leftover upload(s) from a previous run", removed)

    sweeper.start()

    logger.info(
        "Limits: %d file(s) per request, %dMB per file",
        app.state.ingestion_service.max_files,
        round(app.state.ingestion_service.max_file_size / (1024 * 1024)),
    )
    if app.state.consumer is None:
        logger.warning("No image consumer configured; /api/analyze will answer 503")
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("ImageAnalyzer Backend shutting down...")
    await sweeper.stop()
    if settings.wipe_uploads_on_shutdown:
        await lifecycle.wipe_all()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(request: Request, exc: Exception) -> JSONResponse:
    translated = error_translator.translate(exc)
    request.state.error_code = translated.code.value
    rid = getattr(request.state, "request_id", None) or request_id_var.get("") or None
    body = ErrorResponse(
        error=translated.message,
        code=translated.code.value,
        details=translated.details,
        request_id=rid,
    )
    return JSONResponse(
        status_code=translated.status_code,
        content=body.model_dump(mode="json"),
        headers=translated.headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Route every application error through the ErrorTranslator.

    The response never contains a host path, an OS error string or a stack
    trace. Those go to the server log together with the exception context.
    """

    @app.exception_handler(ImageAnalyzerError)
    async def handle_application_error(request: Request, exc: ImageAnalyzerError):
        if isinstance(exc, StorageError):
            logger.error("%s: %s | Context: %s", exc.kind.value, exc.message, exc.context)
        else:
            logger.warning("%s: %s", exc.kind.value, exc.message)
        return _error_response(request, exc)

    # Why: FastAPI's defaults answer with the raw `detail`, which for
    # validation errors echoes the submitted input
    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        logger.warning("Request validation failed: %d error(s)", len(exc.errors()))
        return _error_response(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        logger.warning("HTTP %d on %s %s", exc.status_code, request.method, request.url.path)
        return _error_response(request, exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error: %s", type(exc).__name__, exc_info=exc)
        return _error_response(request, exc)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    consumer: Optional[ImageConsumer] = None,
    upload_root: Optional[Path] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        consumer: Downstream image analysis. Without one, uploads are refused
            with 503 before anything is stored.
        upload_root: Override of `settings.upload_root` (tests use tmp_path).
    """
    app = FastAPI(
        title="ImageAnalyzer API",
        description=(
            "Secure image upload and analysis. Uploaded images are validated, "
            "stored under generated names for the duration of one request and "
            "deleted before the response is returned."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Ingestion Components ──────────────────────────────────────────────
    writer = StorageWriter(upload_root=upload_root)
    lifecycle = LifecycleManager(upload_root=writer.upload_root)
    app.state.storage_writer = writer
    app.state.lifecycle = lifecycle
    app.state.sweeper = PeriodicSweeper(lifecycle)
    app.state.ingestion_service = IngestionService(writer=writer, lifecycle=lifecycle)
    app.state.consumer = consumer

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(analyze.router)
    app.include_router(health.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
# uvicorn expects `imageanalyzer.main:app` to be importable
app = create_app()
