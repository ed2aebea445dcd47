# =============================================================================
# edu_core/ui/notifications.py
# Transient user notices (toast messages)
# =============================================================================
"""
Notifiers deliver short, non-blocking messages to the user.

The storage and sync layers never talk to Streamlit directly; they receive a
Notifier through the application context. ``StreamlitNotifier`` is used inside
a running Streamlit app, ``LogNotifier`` for headless runs and scripts.
"""

from __future__ import annotations
from enum import Enum
from typing import Protocol

import streamlit as st

from edu_core.logging import get_logger

logger = get_logger(__name__)


class NoticeLevel(Enum):
    """Severity of a user notice."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Standard notice texts
REMOTE_FAILURE_NOTICE = "Server connection failed. Changes may not be saved."
LOCAL_SAVE_FAILURE_NOTICE = "Error saving data."
FILE_SAVE_FAILURE_NOTICE = "Error saving file."


class Notifier(Protocol):
    """Anything that can show a transient message to the user."""

    def notify(self, message: str, level: NoticeLevel = NoticeLevel.INFO) -> None:
        ...


class StreamlitNotifier:
    """Shows notices as Streamlit toasts."""

    ICONS = {
        NoticeLevel.INFO: "ℹ️",
        NoticeLevel.SUCCESS: "✅",
        NoticeLevel.WARNING: "⚠️",
        NoticeLevel.ERROR: "❌",
    }

    def notify(self, message: str, level: NoticeLevel = NoticeLevel.INFO) -> None:
        st.toast(message, icon=self.ICONS.get(level))


class LogNotifier:
    """Writes notices to the log only."""

    LEVELS = {
        NoticeLevel.INFO: 20,
        NoticeLevel.SUCCESS: 20,
        NoticeLevel.WARNING: 30,
        NoticeLevel.ERROR: 40,
    }

    def notify(self, message: str, level: NoticeLevel = NoticeLevel.INFO) -> None:
        logger.log(self.LEVELS.get(level, 20), f"[notice:{level.value}] {message}")
