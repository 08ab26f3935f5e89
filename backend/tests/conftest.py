"""
ImageAnalyzer Backend: Test Configuration (conftest.py)
========================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every fixture that touches the disk works inside pytest's tmp_path;
       the HTTP client talks to a fresh app built by create_app().

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── upload_root: Temporary upload directory (not created yet)
    ├── sample_image_bytes / sample_png_bytes: Tiny image payloads
    ├── make_descriptor: Factory for UploadDescriptor
    ├── fake_consumer: ImageConsumer that records what it saw
    ├── app: FastAPI app wired to upload_root and fake_consumer
    └── test_client: HTTPX AsyncClient for API endpoint testing
"""

import asyncio
import os
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Must be set before imageanalyzer.config is imported
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["UPLOAD_DIR"] = "uploads-test"

from imageanalyzer.schemas.upload import StoredFile, UploadDescriptor  # noqa: E402
from imageanalyzer.services.consumer import ImageConsumer  # noqa: E402


class RecordingConsumer(ImageConsumer):
    """
    Test double for the downstream analysis.

    Records, at call time, the stored files and whether each one existed on
    disk while it was being consumed.
    """

    def __init__(self, result: str = "A test analysis", error: Optional[Exception] = None, delay: float = 0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: List[List[StoredFile]] = []
        self.prompts: List[str] = []
        self.existed_during_call: List[bool] = []

    async def consume(self, files: List[StoredFile], prompt: str) -> str:
        self.calls.append(list(files))
        self.prompts.append(prompt)
        self.existed_during_call.extend(f.absolute_path.exists() for f in files)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def upload_root(tmp_path):
    """Upload directory inside tmp_path. Not created: the writer does that."""
    return tmp_path / "uploads"


@pytest.fixture
def sample_image_bytes():
    """Minimal JPEG: SOI marker + JFIF header + EOI marker."""
    return (
        b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00'
        b'\xff\xd9'
    )


@pytest.fixture
def sample_png_bytes():
    """PNG signature followed by a few padding bytes."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture
def make_descriptor(sample_image_bytes):
    """
    Factory for UploadDescriptor with sensible defaults.

    Usage:
        descriptor = make_descriptor("photo.png", "image/png")
    """
    def _make(name="photo.jpg", mime_type="image/jpeg", content=None, size=None):
        data = sample_image_bytes if content is None else content
        return UploadDescriptor(
            original_name=name,
            mime_type=mime_type,
            size=len(data) if size is None else size,
            content=data,
        )
    return _make


@pytest.fixture
def fake_consumer():
    return RecordingConsumer()


@pytest.fixture
def app(upload_root, fake_consumer):
    from imageanalyzer.main import create_app
    return create_app(consumer=fake_consumer, upload_root=upload_root)


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient routed straight into the app (no server, no lifespan).

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def stored_files(directory) -> List[str]:
    """Names of the non-dot files in `directory` ([] if it does not exist)."""
    if not directory.exists():
        return []
    return sorted(p.name for p in directory.iterdir() if not p.name.startswith("."))
