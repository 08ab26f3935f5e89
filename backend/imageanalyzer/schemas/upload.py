"""
ImageAnalyzer Backend: Upload Records and API Schemas
======================================================

What:  Pydantic models for the ingestion core (descriptors, validation
       results, stored files, directory status) and for the HTTP contract.
How:   Core records are fixed-shape models validated at the boundary.
       Response models only carry client-safe fields; StoredFile's absolute
       path is excluded from serialization.
Who:   Built by the analyze route, ValidationGate, StorageWriter and
       LifecycleManager; returned by the routes.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from imageanalyzer.exceptions import ErrorKind


# ══════════════════════════════════════════════════════════════════════════
# Core Records
# ══════════════════════════════════════════════════════════════════════════


class UploadDescriptor(BaseModel):
    """
    One file as received from the multipart parser. Every field is untrusted.

    `original_name` is only ever used for validation, logs and echo; it never
    becomes part of a filesystem path.
    """
    original_name: str = Field(description="Client-supplied filename")
    mime_type: str = Field(description="Client-declared MIME type")
    size: int = Field(ge=0, description="Received byte count")
    content: bytes = Field(repr=False, description="Received bytes")


class ValidationState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ValidationResult(BaseModel):
    """
    Tagged outcome of the ValidationGate: Accepted, or Rejected(kind).

    `message` is safe to show to the client.
    """
    state: ValidationState
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def accepted(cls) -> "ValidationResult":
        return cls(state=ValidationState.ACCEPTED)

    @classmethod
    def rejected(cls, kind: ErrorKind, message: str) -> "ValidationResult":
        return cls(state=ValidationState.REJECTED, error_kind=kind, message=message)

    @property
    def is_accepted(self) -> bool:
        return self.state is ValidationState.ACCEPTED


class StoredFile(BaseModel):
    """
    A validated upload persisted under the upload root.

    Invariants:
        - only built by StorageWriter, after the descriptor was accepted
        - storage_name matches ^[A-Za-z0-9._-]+$
        - absolute_path is a descendant of the resolved upload root and is
          excluded from any serialized output
    """
    original_name: str
    storage_name: str
    absolute_path: Path = Field(exclude=True, repr=False)
    mime_type: str
    size: int
    validation_state: ValidationState = ValidationState.ACCEPTED

    model_config = {"frozen": True}


class UploadStatus(BaseModel):
    """Read-only snapshot of the upload root (dotfiles excluded)."""
    exists: bool
    file_count: int = 0
    total_bytes: int = 0
    oldest_age_seconds: Optional[float] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ProcessedFileInfo(BaseModel):
    original_name: str
    mime_type: str
    size: int


class AnalysisMetadata(BaseModel):
    processed_images: int
    processing_time_ms: int
    files: List[ProcessedFileInfo]
    custom_prompt: Optional[str] = None
    timestamp: datetime


class AnalyzeResponse(BaseModel):
    """Returned by POST /api/analyze after the batch was consumed and deleted."""
    success: bool = True
    analysis: str = Field(description="Result produced by the downstream consumer")
    metadata: AnalysisMetadata


class ErrorResponse(BaseModel):
    """
    Standardized error envelope.

    `code` is one of the ErrorKind values. `details` never contains host
    paths or stack traces.
    """
    success: bool = False
    error: str = Field(description="Human-readable error description")
    code: str = Field(description="Stable machine-readable error code")
    details: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None


class UploadConfigResponse(BaseModel):
    max_file_size: int
    max_file_size_mb: int
    max_files: int
    max_prompt_length: int
    allowed_mime_types: List[str]
    allowed_extensions: List[str]


class UploadDirectoryHealth(BaseModel):
    exists: bool
    file_count: int
    total_bytes: int


class HealthResponse(BaseModel):
    status: str = Field(description="healthy or degraded")
    version: str
    uptime_seconds: float
    consumer: str = Field(description="available, unavailable or not_configured")
    uploads: UploadDirectoryHealth
