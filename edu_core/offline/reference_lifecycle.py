# =============================================================================
# edu_core/offline/reference_lifecycle.py
# Keeps blob keys and the records that reference them in step
# =============================================================================
"""
ReferenceLifecycle - Create/replace/release policy for blob reference fields.

Records never hold file bytes, only BlobStore keys. This module is the only
place that writes or deletes blobs on behalf of a record:

- store_upload: new file -> new key
- replace_reference: new blob first, old blob second, field last
- release_references: drop every blob a record points at (before the record
  itself is removed)
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from edu_core.errors import EduCoreError
from edu_core.logging import get_logger
from edu_core.models import RecordType, Upload, blob_fields
from edu_core.offline.blob_store import BlobStore
from edu_core.ui.notifications import (
    FILE_SAVE_FAILURE_NOTICE,
    LogNotifier,
    NoticeLevel,
    Notifier,
)
from edu_core.utils.ids import upload_key

logger = get_logger(__name__)


class ReferenceLifecycle:
    """
    Blob reference policy bound to one BlobStore.

    Usage:
        lifecycle = ReferenceLifecycle(blobs, notifier)
        key = await lifecycle.store_upload(upload, f"lesson_{lesson_id}_cover")
        await lifecycle.replace_reference(lesson, "videoFile", upload, prefix)
        await lifecycle.release_references(lesson, RecordType.LESSON)
    """

    def __init__(self, blobs: BlobStore, notifier: Optional[Notifier] = None):
        self.blobs = blobs
        self.notifier = notifier or LogNotifier()

    @staticmethod
    def blob_fields(record_type: RecordType) -> Tuple[str, ...]:
        """Blob reference fields registered for a record type."""
        return blob_fields(record_type)

    async def store_upload(self, upload: Optional[Upload], prefix: str) -> Optional[str]:
        """
        Write an upload under a fresh ``{prefix}_{ms}_{filename}`` key.

        Returns:
            The new key, or None if there was no upload or the write failed
        """
        if upload is None:
            return None

        key = upload_key(prefix, upload.filename)
        try:
            await self.blobs.put(key, upload.data, upload.content_type)
        except EduCoreError as e:
            logger.error(f"Could not store upload '{upload.filename}': {e}")
            self.notifier.notify(FILE_SAVE_FAILURE_NOTICE, NoticeLevel.ERROR)
            return None

        logger.info(f"Stored upload '{upload.filename}' as '{key}' ({upload.size} bytes)")
        return key

    async def replace_reference(
        self,
        record: Dict[str, Any],
        field: str,
        upload: Optional[Upload],
        prefix: str,
    ) -> bool:
        """
        Point ``record[field]`` at a new upload, dropping the old blob.

        Order: write new blob, delete old blob, set the field. The record is
        only changed once both blob operations succeeded.

        Returns:
            True if the field now references the new blob (or there was no
            upload to apply), False if the record kept its old reference
        """
        if upload is None:
            return True

        new_key = await self.store_upload(upload, prefix)
        if new_key is None:
            return False

        old_key = record.get(field)
        if old_key and old_key != new_key:
            try:
                await self.blobs.delete(old_key)
            except EduCoreError as e:
                logger.error(f"Could not delete replaced blob '{old_key}': {e}")
                await self._discard(new_key)
                self.notifier.notify(FILE_SAVE_FAILURE_NOTICE, NoticeLevel.ERROR)
                return False

        record[field] = new_key
        return True

    async def release_references(
        self,
        record: Dict[str, Any],
        record_type: RecordType,
    ) -> List[str]:
        """
        Delete every blob the record references.

        One failing key does not stop the others.

        Returns:
            Keys that could not be deleted
        """
        failed: List[str] = []
        for field in self.blob_fields(record_type):
            key = record.get(field)
            if not key:
                continue
            try:
                await self.blobs.delete(key)
            except EduCoreError as e:
                logger.error(f"Could not release blob '{key}' ({field}): {e}")
                failed.append(key)

        if failed:
            logger.warning(f"{len(failed)} blob(s) left behind for record {record.get('id')}")
        return failed

    async def _discard(self, key: str) -> None:
        """Best-effort removal of a blob nobody references."""
        try:
            await self.blobs.delete(key)
        except EduCoreError as e:
            logger.warning(f"Orphaned blob '{key}' could not be removed: {e}")
