# =============================================================================
# edu_core/offline/record_store.py
# Local JSON collection store
# =============================================================================
"""
RecordStore - SQLite-backed store of whole JSON collections.

Each collection (``students``, ``lessons``...) is one row holding the full
JSON document. Reads and writes always move the entire collection; there are
no partial updates. Calls are synchronous.

Usage:
------
    store = RecordStore(settings.record_db_path, notifier=notifier)
    students = store.get_list("students")
    students.append(new_student)
    store.set("students", students)

    # or
    with store.edit("students") as students:
        students.append(new_student)
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterator, List, Optional

import numpy as np
import pandas as pd

from edu_core.errors import (
    DeleteFailed,
    ParseFailed,
    ReadFailed,
    StorageUnavailable,
    WriteFailed,
    handle_error,
)
from edu_core.logging import get_logger
from edu_core.ui.notifications import LOCAL_SAVE_FAILURE_NOTICE, LogNotifier, Notifier

logger = get_logger(__name__)


class RecordEncoder(json.JSONEncoder):
    """JSON encoder that also accepts datetimes and numpy values."""

    def default(self, o: Any) -> Any:
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, np.integer):
            return int(o)
        if isinstance(o, np.floating):
            return float(o)
        if isinstance(o, np.bool_):
            return bool(o)
        if isinstance(o, np.ndarray):
            return o.tolist()
        return super().default(o)


class RecordStore:
    """
    Named JSON collections persisted in a local SQLite file.

    A collection is created on first ``set`` and replaced wholesale by every
    later ``set``.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS collections (
            name TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT
        )
    """

    def __init__(self, db_path: Path, notifier: Optional[Notifier] = None):
        """
        Initialize the record store.

        Args:
            db_path: Path to SQLite database file
            notifier: Receives the user notice when a save fails
        """
        self.db_path = Path(db_path)
        self.notifier = notifier or LogNotifier()
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get the shared connection, creating file and schema on first use."""
        if self._conn is None:
            with self._lock:
                if self._conn is None:
                    try:
                        self.db_path.parent.mkdir(parents=True, exist_ok=True)
                        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                        conn.execute(self.SCHEMA)
                        conn.commit()
                    except (sqlite3.Error, OSError) as e:
                        raise StorageUnavailable(
                            f"Cannot open record store: {e}", path=str(self.db_path)
                        ) from e
                    self._conn = conn
                    logger.info(f"Record store initialized at: {self.db_path}")
        return self._conn

    def initialize(self) -> None:
        """Create the database file and schema eagerly."""
        self._get_connection()

    # =========================================================================
    # READ
    # =========================================================================

    def get(self, name: str) -> Any:
        """
        Read a whole collection.

        Returns:
            The parsed JSON value, or None if never written or unreadable

        Raises:
            ReadFailed: If the engine read fails
        """
        try:
            with self._lock:
                row = self._get_connection().execute(
                    "SELECT value FROM collections WHERE name = ?",
                    [name],
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Read of collection '{name}' failed: {e}")
            raise ReadFailed(f"Could not read collection '{name}': {e}", key=name) from e

        if row is None or row[0] is None:
            return None

        try:
            return json.loads(row[0])
        except (json.JSONDecodeError, TypeError) as e:
            error = ParseFailed(f"Stored collection is not valid JSON: {e}", key=name)
            logger.error(str(error))
            return None

    def get_list(self, name: str) -> List[Any]:
        """Read a list collection, substituting ``[]`` for absence."""
        value = self.get(name)
        return value if value is not None else []

    def names(self) -> List[str]:
        """Names of all stored collections."""
        try:
            with self._lock:
                rows = self._get_connection().execute(
                    "SELECT name FROM collections ORDER BY name"
                ).fetchall()
        except sqlite3.Error as e:
            raise ReadFailed(f"Could not list collections: {e}") from e
        return [row[0] for row in rows]

    # =========================================================================
    # WRITE
    # =========================================================================

    def set(self, name: str, value: Any) -> bool:
        """
        Persist an entire collection, replacing what was stored before.

        On failure the error is logged, the user sees one notice, and False is
        returned. The caller's in-memory value is left as is.

        Returns:
            True if the collection was written
        """
        try:
            payload = json.dumps(value, cls=RecordEncoder, ensure_ascii=False)
            with self._lock:
                conn = self._get_connection()
                conn.execute(
                    """
                    INSERT OR REPLACE INTO collections (name, value, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    [name, payload, datetime.now().isoformat()],
                )
                conn.commit()
        except (TypeError, ValueError, sqlite3.Error, StorageUnavailable) as e:
            handle_error(
                WriteFailed(f"Could not save collection '{name}': {e}", key=name),
                notifier=self.notifier,
                user_message=LOCAL_SAVE_FAILURE_NOTICE,
            )
            return False

        return True

    @contextmanager
    def edit(self, name: str) -> Iterator[List[Any]]:
        """
        Read-modify-write a list collection.

        The yielded list is saved back in full when the block exits normally.
        Nothing is written if the block raises.

        Raises:
            WriteFailed: If the save fails. The user has already been notified.
        """
        items = self.get_list(name)
        yield items
        if not self.set(name, items):
            raise WriteFailed(f"Could not save collection '{name}'", key=name)

    def delete(self, name: str) -> bool:
        """
        Remove a collection entirely.

        Raises:
            DeleteFailed: If the engine delete fails
        """
        try:
            with self._lock:
                conn = self._get_connection()
                cursor = conn.execute("DELETE FROM collections WHERE name = ?", [name])
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Delete of collection '{name}' failed: {e}")
            raise DeleteFailed(f"Could not delete collection '{name}': {e}", key=name) from e
        return cursor.rowcount > 0

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, name: str) -> pd.DataFrame:
        """
        Load a collection into a pandas DataFrame.

        A single-object collection becomes a one-row frame; an absent one
        becomes an empty frame.
        """
        value = self.get(name)
        if value is None:
            return pd.DataFrame()
        if isinstance(value, dict):
            return pd.DataFrame([value])
        return pd.DataFrame(value)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
