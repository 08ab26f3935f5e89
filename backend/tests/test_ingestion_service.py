"""
ImageAnalyzer Backend: Ingestion Service Tests
===============================================

What:  Tests for the screen → store → consume → delete workflow.
How:   Real ValidationGate, SecureNameGenerator, StorageWriter and
       LifecycleManager over tmp_path; RecordingConsumer as the consumer.

Test Strategy:
    ✅ Files exist while consumed and are gone afterwards, on every path
    ✅ A rejected batch writes nothing
    ✅ A failed write rolls back the files already written
    ✅ Consumer timeout → ProcessingTimeoutError, files deleted
    ✅ Cancellation still deletes the batch, also while writes are in flight
"""

import asyncio
from unittest.mock import patch

import pytest

from conftest import RecordingConsumer, stored_files
from imageanalyzer.exceptions import (
    BatchRejectedError,
    ConsumerUnavailableError,
    ErrorKind,
    ProcessingTimeoutError,
    ResourceLimitError,
    StorageWriteError,
)
from imageanalyzer.services.ingestion_service import IngestionService
from imageanalyzer.services.lifecycle import BatchState
from imageanalyzer.services.storage import StorageWriter


@pytest.fixture
def service(upload_root):
    return IngestionService(
        writer=StorageWriter(upload_root=upload_root),
        max_files=10,
        max_file_size=1024,
        max_prompt_length=50,
    )


class TestScreenBatch:

    def test_no_files(self, service):
        with pytest.raises(ResourceLimitError) as exc_info:
            service.screen_batch([])
        assert exc_info.value.kind is ErrorKind.NO_FILES

    def test_too_many_files(self, service, make_descriptor):
        with pytest.raises(ResourceLimitError) as exc_info:
            service.screen_batch([make_descriptor(f"p{i}.jpg") for i in range(11)])
        assert exc_info.value.kind is ErrorKind.TOO_MANY_FILES
        assert exc_info.value.context["max_files"] == 10

    def test_exactly_max_files(self, service, make_descriptor):
        service.screen_batch([make_descriptor(f"p{i}.jpg") for i in range(10)])

    def test_prompt_too_long(self, service, make_descriptor):
        with pytest.raises(ResourceLimitError) as exc_info:
            service.screen_batch([make_descriptor()], prompt="x" * 51)
        assert exc_info.value.kind is ErrorKind.FIELD_TOO_LONG

    def test_file_too_large(self, service, make_descriptor):
        with pytest.raises(BatchRejectedError) as exc_info:
            service.screen_batch([make_descriptor(content=b"x" * 1025)])
        assert exc_info.value.kind is ErrorKind.FILE_TOO_LARGE

    def test_file_at_size_limit(self, service, make_descriptor):
        service.screen_batch([make_descriptor(content=b"x" * 1024)])

    def test_every_rejected_file_is_listed(self, service, make_descriptor):
        batch = [
            make_descriptor("ok.jpg"),
            make_descriptor("../../evil.png", "image/png"),
            make_descriptor("doc.pdf", "application/pdf"),
        ]

        with pytest.raises(BatchRejectedError) as exc_info:
            service.screen_batch(batch)

        rejections = exc_info.value.rejections
        assert [r["index"] for r in rejections] == [1, 2]
        assert [r["code"] for r in rejections] == ["INVALID_FILENAME_PATH", "INVALID_MIME_TYPE"]
        assert exc_info.value.kind is ErrorKind.INVALID_FILENAME_PATH


class TestStoreBatch:

    @pytest.mark.asyncio
    async def test_stores_all_concurrently(self, service, upload_root, make_descriptor):
        stored = await service.store_batch([make_descriptor("a.jpg"), make_descriptor("b.png", "image/png")])

        assert len(stored) == 2
        assert stored[0].original_name == "a.jpg"
        assert stored[1].storage_name.endswith(".png")
        assert sorted(stored_files(upload_root)) == sorted(s.storage_name for s in stored)

    @pytest.mark.asyncio
    async def test_partial_failure_rolls_back(self, service, upload_root, make_descriptor):
        real_write = service.writer.write
        calls = {"n": 0}

        async def failing_second_write(storage_name, descriptor):
            calls["n"] += 1
            if descriptor.original_name == "second.jpg":
                raise StorageWriteError(context={"os_error": "disk full"})
            return await real_write(storage_name, descriptor)

        with patch.object(service.writer, "write", side_effect=failing_second_write):
            with pytest.raises(StorageWriteError):
                await service.store_batch([
                    make_descriptor("first.jpg"),
                    make_descriptor("second.jpg"),
                    make_descriptor("third.jpg"),
                ])

        assert calls["n"] == 3
        assert stored_files(upload_root) == []

    @pytest.mark.asyncio
    async def test_cancel_during_writes_rolls_back(self, service, upload_root, make_descriptor):
        """A client disconnect while the batch is being written leaves nothing on disk."""
        real_write = service.writer.write
        never = asyncio.Event()

        async def stalled_second_write(storage_name, descriptor):
            if descriptor.original_name == "second.jpg":
                await never.wait()
            return await real_write(storage_name, descriptor)

        with patch.object(service.writer, "write", side_effect=stalled_second_write):
            task = asyncio.create_task(
                service.process(
                    [make_descriptor("first.jpg"), make_descriptor("second.jpg")],
                    RecordingConsumer(),
                )
            )
            for _ in range(100):
                if stored_files(upload_root):
                    break
                await asyncio.sleep(0.01)
            assert len(stored_files(upload_root)) == 1

            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert stored_files(upload_root) == []

    @pytest.mark.asyncio
    async def test_results_keep_upload_order(self, service, make_descriptor):
        stored = await service.store_batch([make_descriptor(f"p{i}.jpg") for i in range(5)])
        assert [s.original_name for s in stored] == [f"p{i}.jpg" for i in range(5)]


class TestProcess:

    @pytest.mark.asyncio
    async def test_success_deletes_after_consume(self, service, upload_root, make_descriptor):
        consumer = RecordingConsumer(result="two cats")

        analysis, batch = await service.process(
            [make_descriptor("test.jpg"), make_descriptor("b.png", "image/png")],
            consumer,
            prompt="count the cats",
        )

        assert analysis == "two cats"
        assert consumer.existed_during_call == [True, True]
        assert consumer.prompts == ["count the cats"]
        assert batch.state is BatchState.DELETED
        assert stored_files(upload_root) == []

    @pytest.mark.asyncio
    async def test_consumer_error_still_deletes(self, service, upload_root, make_descriptor):
        consumer = RecordingConsumer(error=RuntimeError("model crashed"))

        with pytest.raises(RuntimeError):
            await service.process([make_descriptor()], consumer)

        assert consumer.existed_during_call == [True]
        assert stored_files(upload_root) == []

    @pytest.mark.asyncio
    async def test_timeout(self, service, upload_root, make_descriptor):
        consumer = RecordingConsumer(delay=5)

        with pytest.raises(ProcessingTimeoutError) as exc_info:
            await service.process([make_descriptor()], consumer, timeout=0.05)

        assert exc_info.value.kind is ErrorKind.PROCESSING_TIMEOUT
        assert stored_files(upload_root) == []

    @pytest.mark.asyncio
    async def test_cancellation_still_deletes(self, service, upload_root, make_descriptor):
        consumer = RecordingConsumer(delay=5)
        task = asyncio.create_task(service.process([make_descriptor()], consumer))

        for _ in range(100):
            if consumer.calls:
                break
            await asyncio.sleep(0.01)
        assert stored_files(upload_root) != []

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        # Cleanup runs shielded; give it a moment to finish
        for _ in range(100):
            if not stored_files(upload_root):
                break
            await asyncio.sleep(0.01)

        assert stored_files(upload_root) == []

    @pytest.mark.asyncio
    async def test_rejected_batch_writes_nothing(self, service, upload_root, make_descriptor):
        consumer = RecordingConsumer()
        batch = [make_descriptor(f"p{i}.jpg") for i in range(11)]

        with pytest.raises(ResourceLimitError):
            await service.process(batch, consumer)

        assert consumer.calls == []
        assert not upload_root.exists()

    @pytest.mark.asyncio
    async def test_missing_consumer_writes_nothing(self, service, upload_root, make_descriptor):
        with pytest.raises(ConsumerUnavailableError):
            await service.process([make_descriptor()], None)

        assert stored_files(upload_root) == []

    @pytest.mark.asyncio
    async def test_screening_before_consumer_check(self, service, make_descriptor):
        with pytest.raises(BatchRejectedError):
            await service.process([make_descriptor("../x.png", "image/png")], None)
