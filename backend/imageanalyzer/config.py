"""
ImageAnalyzer Backend: Application Configuration
=================================================

What:  Centralized configuration for the upload ingestion subsystem, loaded
       with Pydantic Settings from environment variables or a .env file.
How:   Every value is typed and range-checked when the module is imported,
       so a bad UPLOAD_DIR or MAX_FILES stops the process before it accepts
       a single upload.
Who:   Imported by the services, the routes and the application factory.
When:  Once at import time. Components receive explicit overrides in tests.

Upload directory rules:
    UPLOAD_DIR must be a relative path without ".." segments and without
    NUL bytes. It is resolved against the process working directory; the
    resolved absolute path is exposed as `settings.upload_root` and is never
    sent to clients.
"""

from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes are grouped by concern. Defaults match a local development
    setup; limits follow the bounds enforced on the multipart parser.
    """

    # ── Upload Storage ────────────────────────────────────────────────────
    # Relative directory holding transient uploads (flat, no subdirectories)
    upload_dir: str = Field(default="uploads")

    # Per-file byte limit. Default 10 MiB, bounded to 1 byte .. 50 MiB
    max_file_size: int = Field(default=10_485_760, ge=1, le=52_428_800)

    # Files accepted in one multipart batch
    max_files: int = Field(default=10, ge=1, le=20)

    # Characters accepted in the optional "prompt" text field
    max_prompt_length: int = Field(default=1000, ge=1, le=10_000)

    # Non-file form fields accepted in one request, and the byte cap on each.
    # The parser stops at the first field over either limit
    max_form_fields: int = Field(default=10, ge=1, le=100)
    max_field_size: int = Field(default=1_048_576, ge=1024, le=10_485_760)

    # ── Lifecycle / Cleanup ───────────────────────────────────────────────
    # Files older than this are reclaimed by the age sweep
    cleanup_max_age_minutes: int = Field(default=30, ge=1, le=1440)

    # Seconds between two runs of the background age sweep
    cleanup_interval_seconds: int = Field(default=300, ge=10, le=86_400)

    # Full wipe of the upload root at process start / stop
    wipe_uploads_on_startup: bool = Field(default=True)
    wipe_uploads_on_shutdown: bool = Field(default=True)

    # Upper bound for one call into the downstream image consumer
    processing_timeout_seconds: float = Field(default=120.0, ge=1, le=600)

    # ── CORS ──────────────────────────────────────────────────────────────
    # Comma-separated origins allowed to call the API from a browser
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("upload_dir")
    @classmethod
    def validate_upload_dir(cls, v: str) -> str:
        """
        Rejects upload directories that could point outside the working tree.

        The same traversal rules applied to client filenames apply here:
        no "..", no absolute path (POSIX or Windows drive form), no NUL byte.
        """
        value = v.strip()
        if not value:
            raise ValueError("UPLOAD_DIR must not be empty")
        if "\0" in value:
            raise ValueError("UPLOAD_DIR must not contain null bytes")
        if ".." in value:
            raise ValueError('UPLOAD_DIR must be a relative path without ".."')
        if value.startswith(("/", "\\")) or Path(value).is_absolute() or ":" in value:
            raise ValueError("UPLOAD_DIR must be a relative path, not an absolute one")
        return value

    @property
    def upload_root(self) -> Path:
        """Absolute, resolved upload directory (server-side use only)."""
        return Path(self.upload_dir).resolve()

    @property
    def max_file_size_mb(self) -> int:
        return round(self.max_file_size / (1024 * 1024))

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


# Singleton instance, imported throughout the application
settings = Settings()
