# =============================================================================
# edu_core/offline/blob_store.py
# Local binary store for uploaded media
# =============================================================================
"""
BlobStore - SQLite-backed key -> bytes store for files referenced by records.

Features:
- Lazy, idempotent open shared by concurrent callers
- Schema versioning through PRAGMA user_version
- Every engine call runs on one dedicated worker thread
- Typed errors per operation (WriteFailed, ReadFailed, DeleteFailed)
- Transient file handles for display (images, video, PDF)
"""

from __future__ import annotations
import asyncio
import functools
import re
import sqlite3
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from edu_core.errors import (
    StorageUnavailable,
    ReadFailed,
    WriteFailed,
    DeleteFailed,
    error_boundary,
)
from edu_core.logging import get_logger

logger = get_logger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True)
class BlobEntry:
    """A stored blob and its metadata."""
    key: str
    data: bytes
    content_type: Optional[str]
    size: int
    stored_at: Optional[str]


@dataclass(frozen=True)
class BlobHandle:
    """
    Display handle for a blob, materialised as a transient file.

    The file lives until ``BlobStore.release_handle`` is called.
    """
    key: str
    path: Path
    content_type: Optional[str]
    size: int

    @property
    def uri(self) -> str:
        return self.path.resolve().as_uri()


class BlobStore:
    """
    Local binary store keyed by opaque string keys.

    Callers never touch the connection; every public operation is a
    coroutine that runs its SQLite work on the store's own worker thread.
    """

    SCHEMA_VERSION = 1

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS blobs (
            key TEXT PRIMARY KEY,
            data BLOB,
            content_type TEXT,
            size INTEGER,
            stored_at TEXT
        )
    """

    _UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")

    def __init__(self, db_path: Path, handle_dir: Optional[Path] = None):
        """
        Initialize the blob store. Nothing is opened until first use.

        Args:
            db_path: Path to the SQLite file
            handle_dir: Directory for transient display files
        """
        self.db_path = Path(db_path)
        self.handle_dir = Path(handle_dir) if handle_dir else self.db_path.parent / "handles"
        self._executor: Optional[ThreadPoolExecutor] = None
        self._conn: Optional[sqlite3.Connection] = None
        self._opening: Optional[asyncio.Future] = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="blob-store")
        return self._executor

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking call on the store's worker thread."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._get_executor(), functools.partial(func, *args))

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _open_sync(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailable(f"Cannot open blob store: {e}", path=str(self.db_path)) from e

        try:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            if version > self.SCHEMA_VERSION:
                raise StorageUnavailable(
                    f"Blob store schema version {version} is newer than supported "
                    f"version {self.SCHEMA_VERSION}",
                    path=str(self.db_path),
                )
            if version < self.SCHEMA_VERSION:
                conn.execute(self.SCHEMA)
                conn.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
                conn.commit()
                logger.debug(f"Blob store schema upgraded {version} -> {self.SCHEMA_VERSION}")
        except sqlite3.Error as e:
            conn.close()
            raise StorageUnavailable(f"Cannot prepare blob store schema: {e}", path=str(self.db_path)) from e
        except StorageUnavailable:
            conn.close()
            raise

        return conn

    async def _open_and_publish(self) -> sqlite3.Connection:
        conn = await self._run(self._open_sync)
        self._conn = conn
        logger.info(f"Blob store opened at: {self.db_path}")
        return conn

    async def open(self) -> sqlite3.Connection:
        """
        Open the store. Safe to call repeatedly and concurrently.

        Callers arriving while an open is in flight share its outcome. A failed
        open is forgotten so the next call retries.

        Raises:
            StorageUnavailable: If the engine or schema cannot be initialised
        """
        if self._conn is not None:
            return self._conn

        if self._opening is None:
            self._opening = asyncio.ensure_future(self._open_and_publish())

        opening = self._opening
        try:
            return await asyncio.shield(opening)
        except StorageUnavailable as e:
            if self._opening is opening:
                self._opening = None
                logger.error(f"Blob store unavailable: {e}")
            raise
        finally:
            if self._conn is not None and self._opening is opening:
                self._opening = None

    async def close(self) -> None:
        """
        Close the connection and stop the worker thread.

        An open still in flight is awaited first, so its connection is closed
        too. A later operation reopens the store.
        """
        opening = self._opening
        if opening is not None and not opening.done():
            try:
                await asyncio.shield(opening)
            except StorageUnavailable as e:
                logger.debug(f"Open failed while closing: {e}")
        self._opening = None

        conn, self._conn = self._conn, None
        if conn is not None:
            await self._run(conn.close)
            logger.info("Blob store closed")

        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

    # =========================================================================
    # BLOB OPERATIONS
    # =========================================================================

    def _put_sync(self, conn: sqlite3.Connection, key: str, data: bytes,
                  content_type: Optional[str]) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO blobs (key, data, content_type, size, stored_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            [key, sqlite3.Binary(data), content_type, len(data), datetime.now().isoformat()],
        )
        conn.commit()

    async def put(self, key: str, data: BytesLike, content_type: Optional[str] = None) -> str:
        """
        Store bytes under a key, replacing any previous value.

        Args:
            key: Non-empty blob key
            data: Raw bytes
            content_type: Optional MIME type kept for display

        Returns:
            The key

        Raises:
            WriteFailed: If the key is empty or the engine rejects the write
        """
        if not key:
            raise WriteFailed("Blob key must be a non-empty string", key=key)

        conn = await self.open()
        payload = bytes(data)
        try:
            await self._run(self._put_sync, conn, key, payload, content_type)
        except sqlite3.Error as e:
            logger.error(f"Blob write failed for '{key}': {e}")
            raise WriteFailed(f"Could not store blob: {e}", key=key) from e

        logger.debug(f"Stored blob '{key}' ({len(payload)} bytes)")
        return key

    def _get_sync(self, conn: sqlite3.Connection, key: str) -> Optional[BlobEntry]:
        row = conn.execute(
            "SELECT key, data, content_type, size, stored_at FROM blobs WHERE key = ?",
            [key],
        ).fetchone()
        if row is None:
            return None
        data = bytes(row[1]) if row[1] is not None else b""
        return BlobEntry(
            key=row[0],
            data=data,
            content_type=row[2],
            size=row[3] if row[3] is not None else len(data),
            stored_at=row[4],
        )

    async def get_entry(self, key: Optional[str]) -> Optional[BlobEntry]:
        """
        Fetch a blob with its metadata.

        Returns:
            BlobEntry, or None for a null key or a missing blob

        Raises:
            ReadFailed: If the engine read fails
        """
        if not key:
            return None

        conn = await self.open()
        try:
            return await self._run(self._get_sync, conn, key)
        except sqlite3.Error as e:
            logger.error(f"Blob read failed for '{key}': {e}")
            raise ReadFailed(f"Could not read blob: {e}", key=key) from e

    async def get(self, key: Optional[str]) -> Optional[bytes]:
        """Fetch blob bytes, or None for a null key or a missing blob."""
        entry = await self.get_entry(key)
        return entry.data if entry is not None else None

    def _delete_sync(self, conn: sqlite3.Connection, key: str) -> int:
        cursor = conn.execute("DELETE FROM blobs WHERE key = ?", [key])
        conn.commit()
        return cursor.rowcount

    async def delete(self, key: Optional[str]) -> None:
        """
        Remove a blob. Null or missing keys are a no-op.

        Raises:
            DeleteFailed: If the engine delete fails
        """
        if not key:
            return

        conn = await self.open()
        try:
            removed = await self._run(self._delete_sync, conn, key)
        except sqlite3.Error as e:
            logger.error(f"Blob delete failed for '{key}': {e}")
            raise DeleteFailed(f"Could not delete blob: {e}", key=key) from e

        if removed:
            logger.debug(f"Deleted blob '{key}'")

    async def keys(self) -> List[str]:
        """All stored keys, sorted."""
        conn = await self.open()
        try:
            rows = await self._run(
                lambda: conn.execute("SELECT key FROM blobs ORDER BY key").fetchall()
            )
        except sqlite3.Error as e:
            raise ReadFailed(f"Could not list blobs: {e}") from e
        return [row[0] for row in rows]

    # =========================================================================
    # DISPLAY HANDLES
    # =========================================================================

    def _materialise(self, entry: BlobEntry) -> BlobHandle:
        self.handle_dir.mkdir(parents=True, exist_ok=True)
        safe_name = self._UNSAFE_FILENAME.sub("_", entry.key)[-80:]
        path = self.handle_dir / f"{uuid.uuid4().hex[:12]}_{safe_name}"
        path.write_bytes(entry.data)
        return BlobHandle(
            key=entry.key,
            path=path,
            content_type=entry.content_type,
            size=entry.size,
        )

    @error_boundary(default_return=None)
    async def resolve_to_handle(self, key: Optional[str]) -> Optional[BlobHandle]:
        """
        Resolve a key to a displayable handle.

        Returns None when the key is null, the blob is missing, or anything
        fails along the way. Failures are logged only.
        """
        if not key:
            return None

        entry = await self.get_entry(key)
        if entry is None:
            logger.debug(f"No blob for key '{key}'")
            return None
        return await self._run(self._materialise, entry)

    def release_handle(self, handle: Optional[BlobHandle]) -> bool:
        """Remove the transient file behind a handle."""
        if handle is None:
            return False
        try:
            handle.path.unlink(missing_ok=True)
            return True
        except OSError as e:
            logger.warning(f"Could not release handle for '{handle.key}': {e}")
            return False
