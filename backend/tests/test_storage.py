"""
ImageAnalyzer Backend: Storage Writer Tests
============================================

What:  Tests for upload root preparation and confined writes.
How:   Real files under pytest's tmp_path; OS failures are simulated by
       patching aiofiles.

Test Strategy:
    ✅ Root created lazily with the .gitkeep marker
    ✅ Written bytes and returned StoredFile match the descriptor
    ✅ Traversal names never leave the root
    ✅ Existing files are never overwritten
    ✅ OS errors become generic storage errors
"""

import os
from unittest.mock import patch

import pytest

from imageanalyzer.exceptions import (
    DirectoryError,
    ErrorKind,
    PathOutsideUploadDirectory,
    StorageWriteError,
)
from imageanalyzer.schemas.upload import ValidationState
from imageanalyzer.services.storage import MARKER_FILENAME, StorageWriter


class TestEnsureUploadRoot:

    @pytest.mark.asyncio
    async def test_creates_missing_root_with_marker(self, upload_root):
        writer = StorageWriter(upload_root=upload_root)
        assert not upload_root.exists()

        root = await writer.ensure_upload_root()

        assert root == upload_root.resolve()
        assert upload_root.is_dir()
        assert (upload_root / MARKER_FILENAME).is_file()
        assert writer.root_ready

    @pytest.mark.asyncio
    async def test_idempotent(self, upload_root):
        writer = StorageWriter(upload_root=upload_root)
        await writer.ensure_upload_root()
        (upload_root / MARKER_FILENAME).write_text("custom\n")

        await writer.ensure_upload_root()

        assert (upload_root / MARKER_FILENAME).read_text() == "custom\n"

    @pytest.mark.asyncio
    async def test_root_is_a_file(self, upload_root):
        upload_root.write_bytes(b"not a directory")
        writer = StorageWriter(upload_root=upload_root)

        with pytest.raises(DirectoryError) as exc_info:
            await writer.ensure_upload_root()

        assert exc_info.value.kind is ErrorKind.DIRECTORY_ERROR
        assert str(upload_root) not in exc_info.value.message
        assert not writer.root_ready


class TestWrite:

    @pytest.mark.asyncio
    async def test_write_creates_root_lazily(self, upload_root, make_descriptor, sample_image_bytes):
        writer = StorageWriter(upload_root=upload_root)
        descriptor = make_descriptor("test.jpg")

        stored = await writer.write("image-1-abc.jpg", descriptor)

        assert stored.absolute_path == upload_root.resolve() / "image-1-abc.jpg"
        assert stored.absolute_path.read_bytes() == sample_image_bytes
        assert stored.original_name == "test.jpg"
        assert stored.storage_name == "image-1-abc.jpg"
        assert stored.size == len(sample_image_bytes)
        assert stored.mime_type == "image/jpeg"
        assert stored.validation_state is ValidationState.ACCEPTED

    @pytest.mark.asyncio
    async def test_absolute_path_not_serialized(self, upload_root, make_descriptor):
        writer = StorageWriter(upload_root=upload_root)
        stored = await writer.write("image-2-abc.png", make_descriptor("a.png", "image/png"))

        dumped = stored.model_dump()
        assert "absolute_path" not in dumped
        assert str(upload_root) not in stored.model_dump_json()

    @pytest.mark.asyncio
    async def test_mime_type_normalized(self, upload_root, make_descriptor):
        writer = StorageWriter(upload_root=upload_root)
        stored = await writer.write("image-3-abc.png", make_descriptor("a.png", "Image/PNG; x=y"))
        assert stored.mime_type == "image/png"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["../escape.jpg", "../../etc/passwd", ".", ""])
    async def test_containment(self, tmp_path, upload_root, make_descriptor, name):
        writer = StorageWriter(upload_root=upload_root)

        with pytest.raises(PathOutsideUploadDirectory):
            await writer.write(name, make_descriptor())

        assert not (tmp_path / "escape.jpg").exists()
        assert [p.name for p in upload_root.iterdir()] == [MARKER_FILENAME]

    @pytest.mark.asyncio
    async def test_never_overwrites(self, upload_root, make_descriptor):
        writer = StorageWriter(upload_root=upload_root)
        await writer.write("image-4-abc.jpg", make_descriptor(content=b"first"))

        with pytest.raises(StorageWriteError) as exc_info:
            await writer.write("image-4-abc.jpg", make_descriptor(content=b"second"))

        assert (upload_root / "image-4-abc.jpg").read_bytes() == b"first"
        assert exc_info.value.message == "Failed to save uploaded image"

    @pytest.mark.asyncio
    async def test_root_removed_after_verification(self, upload_root, make_descriptor):
        writer = StorageWriter(upload_root=upload_root)
        await writer.ensure_upload_root()
        os.remove(upload_root / MARKER_FILENAME)
        os.rmdir(upload_root)

        with pytest.raises(DirectoryError):
            await writer.write("image-5-abc.jpg", make_descriptor())
        assert not writer.root_ready

        # Next write re-creates the root
        stored = await writer.write("image-6-abc.jpg", make_descriptor())
        assert stored.absolute_path.exists()

    @pytest.mark.asyncio
    async def test_disk_full_is_generic(self, upload_root, make_descriptor):
        writer = StorageWriter(upload_root=upload_root)
        await writer.ensure_upload_root()

        with patch(
            "imageanalyzer.services.storage.aiofiles.open",
            side_effect=OSError(28, "No space left on device"),
        ):
            with pytest.raises(StorageWriteError) as exc_info:
                await writer.write("image-7-abc.jpg", make_descriptor())

        assert "No space" not in exc_info.value.message
        assert "No space" in exc_info.value.context["os_error"]
        assert not (upload_root / "image-7-abc.jpg").exists()
