"""User-facing notice helpers for the EduHub offline core."""

from .notifications import (
    NoticeLevel,
    Notifier,
    StreamlitNotifier,
    LogNotifier,
    REMOTE_FAILURE_NOTICE,
    LOCAL_SAVE_FAILURE_NOTICE,
    FILE_SAVE_FAILURE_NOTICE,
)

__all__ = [
    "NoticeLevel",
    "Notifier",
    "StreamlitNotifier",
    "LogNotifier",
    "REMOTE_FAILURE_NOTICE",
    "LOCAL_SAVE_FAILURE_NOTICE",
    "FILE_SAVE_FAILURE_NOTICE",
]
