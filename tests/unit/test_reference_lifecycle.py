# =============================================================================
# tests/unit/test_reference_lifecycle.py
# Unit Tests for ReferenceLifecycle
# =============================================================================

import asyncio
import re
from unittest.mock import AsyncMock

import pytest

from edu_core.errors import DeleteFailed, WriteFailed
from edu_core.models import RecordType, Upload
from edu_core.offline.reference_lifecycle import ReferenceLifecycle
from edu_core.ui.notifications import FILE_SAVE_FAILURE_NOTICE


@pytest.fixture
def lifecycle(blob_store, notifier):
    return ReferenceLifecycle(blob_store, notifier)


@pytest.fixture
def mock_blobs():
    """BlobStore stand-in recording call order"""
    return AsyncMock()


class TestStoreUpload:
    """Test writing new uploads"""

    def test_key_format(self, lifecycle, blob_store, sample_upload):
        key = asyncio.run(lifecycle.store_upload(sample_upload, "lesson_42_cover"))

        assert re.fullmatch(r"lesson_42_cover_\d+_cover\.png", key)
        assert asyncio.run(blob_store.get(key)) == sample_upload.data

    def test_no_upload(self, lifecycle):
        assert asyncio.run(lifecycle.store_upload(None, "lesson_1_cover")) is None

    def test_write_failure_notifies(self, mock_blobs, notifier, sample_upload):
        mock_blobs.put.side_effect = WriteFailed("disk full")
        lifecycle = ReferenceLifecycle(mock_blobs, notifier)

        assert asyncio.run(lifecycle.store_upload(sample_upload, "receipt_1_5")) is None
        assert notifier.messages == [FILE_SAVE_FAILURE_NOTICE]


class TestReplaceReference:
    """Test the write-new, delete-old, set-field order"""

    def test_replace_order(self, mock_blobs, notifier):
        lifecycle = ReferenceLifecycle(mock_blobs, notifier)
        record = {"id": 1, "videoFile": "lesson_1_video_100_v1.mp4"}

        replaced = asyncio.run(lifecycle.replace_reference(
            record, "videoFile", Upload("v2.mp4", b"v2"), "lesson_1_video",
        ))

        assert replaced
        assert [name for name, _, _ in mock_blobs.mock_calls] == ["put", "delete"]
        new_key = mock_blobs.put.call_args.args[0]
        mock_blobs.delete.assert_awaited_once_with("lesson_1_video_100_v1.mp4")
        assert record["videoFile"] == new_key

    def test_replace_with_real_store(self, lifecycle, blob_store):
        async def scenario():
            record = {"id": 1}
            await lifecycle.replace_reference(record, "videoFile", Upload("v1.mp4", b"one"), "lesson_1_video")
            first_key = record["videoFile"]
            await lifecycle.replace_reference(record, "videoFile", Upload("v2.mp4", b"two"), "lesson_1_video")
            return first_key, record["videoFile"], await blob_store.keys()

        first_key, second_key, keys = asyncio.run(scenario())

        assert first_key != second_key
        assert keys == [second_key]

    def test_old_delete_failure_keeps_old_reference(self, mock_blobs, notifier):
        """The record keeps the old key and the new blob is discarded"""
        mock_blobs.delete.side_effect = [DeleteFailed("locked"), None]
        lifecycle = ReferenceLifecycle(mock_blobs, notifier)
        record = {"id": 1, "coverImage": "old-key"}

        replaced = asyncio.run(lifecycle.replace_reference(
            record, "coverImage", Upload("c.png", b"c"), "lesson_1_cover",
        ))

        new_key = mock_blobs.put.call_args.args[0]
        assert not replaced
        assert record["coverImage"] == "old-key"
        assert mock_blobs.delete.await_args_list[1].args == (new_key,)
        assert notifier.messages == [FILE_SAVE_FAILURE_NOTICE]

    def test_new_write_failure_keeps_record(self, mock_blobs, notifier):
        mock_blobs.put.side_effect = WriteFailed("disk full")
        lifecycle = ReferenceLifecycle(mock_blobs, notifier)
        record = {"imageKey": "old-key"}

        assert not asyncio.run(lifecycle.replace_reference(record, "imageKey", Upload("b.png", b"b"), "background"))
        assert record["imageKey"] == "old-key"
        mock_blobs.delete.assert_not_called()

    def test_no_upload_is_a_noop(self, mock_blobs):
        lifecycle = ReferenceLifecycle(mock_blobs)
        record = {"imageKey": "k"}

        assert asyncio.run(lifecycle.replace_reference(record, "imageKey", None, "background"))
        assert record == {"imageKey": "k"}
        assert mock_blobs.mock_calls == []

    def test_first_upload_into_empty_field(self, mock_blobs):
        lifecycle = ReferenceLifecycle(mock_blobs)
        record = {"imageKey": None}

        assert asyncio.run(lifecycle.replace_reference(record, "imageKey", Upload("b.png", b"b"), "background"))
        mock_blobs.delete.assert_not_called()
        assert record["imageKey"].startswith("background_")


class TestReleaseReferences:
    """Test blob removal before a record is deleted"""

    def test_releases_every_field(self, mock_blobs):
        lifecycle = ReferenceLifecycle(mock_blobs)
        lesson = {"id": 1, "coverImage": "c", "videoFile": "v", "pdfFile": None}

        failed = asyncio.run(lifecycle.release_references(lesson, RecordType.LESSON))

        assert failed == []
        assert sorted(call.args[0] for call in mock_blobs.delete.await_args_list) == ["c", "v"]

    def test_failures_do_not_stop_others(self, mock_blobs):
        async def delete(key):
            if key == "v":
                raise DeleteFailed("locked", key=key)

        mock_blobs.delete.side_effect = delete
        lifecycle = ReferenceLifecycle(mock_blobs)
        lesson = {"coverImage": "c", "videoFile": "v", "homeworkFile": "h"}

        failed = asyncio.run(lifecycle.release_references(lesson, RecordType.LESSON))

        assert failed == ["v"]
        assert mock_blobs.delete.await_count == 3

    def test_blob_fields_registry(self):
        assert ReferenceLifecycle.blob_fields(RecordType.TRANSFER_REQUEST) == ("receiptImageKey",)
        assert len(ReferenceLifecycle.blob_fields(RecordType.LESSON)) == 6
        assert ReferenceLifecycle.blob_fields("unknownType") == ()
