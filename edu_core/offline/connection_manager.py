# =============================================================================
# edu_core/offline/connection_manager.py
# Remote reachability state for the session
# =============================================================================
"""
ConnectionManager - Holds the session's reachability flag.

The flag is decided once, by the startup probe, and never flips afterwards.
Individual request outcomes are still counted so the UI can show how the
remote is behaving.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from edu_core.logging import get_logger

logger = get_logger(__name__)


class SyncState(Enum):
    """Reachability of the remote authority."""
    UNPROBED = "unprobed"         # Startup probe not finished
    REACHABLE = "reachable"       # Probe succeeded; sync enabled
    UNREACHABLE = "unreachable"   # Probe failed; sync disabled for the session


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: SyncState = SyncState.UNPROBED
    probed_at: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    successful_calls: int = 0
    failed_calls: int = 0
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Reachability state shared by the SyncClient, SyncCoordinator and services.

    Usage:
        manager = ConnectionManager()
        manager.record_probe(reachable=True)
        if manager.sync_enabled:
            # mirror the mutation to the remote
    """

    def __init__(self):
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> SyncState:
        return self._state.status

    @property
    def sync_enabled(self) -> bool:
        """True once the startup probe reached the remote."""
        return self._state.status == SyncState.REACHABLE

    @property
    def is_unreachable(self) -> bool:
        return self._state.status == SyncState.UNREACHABLE

    def record_probe(self, reachable: bool, error: Optional[str] = None) -> SyncState:
        """
        Record the startup probe outcome.

        Only the first probe decides the state; later calls are ignored.

        Returns:
            The session's SyncState
        """
        with self._lock:
            if self._state.status != SyncState.UNPROBED:
                logger.warning(
                    f"Reachability already decided ({self._state.status.value}); "
                    f"ignoring probe result"
                )
                return self._state.status

            self._state.status = SyncState.REACHABLE if reachable else SyncState.UNREACHABLE
            self._state.probed_at = datetime.now()
            self._state.error_message = error

        logger.info(f"Remote probe finished. Status: {self._state.status.value}")
        self._notify_callbacks()
        return self._state.status

    def record_success(self) -> None:
        """Count a successful remote call."""
        with self._lock:
            self._state.successful_calls += 1
            self._state.consecutive_failures = 0
            self._state.last_success = datetime.now()

    def record_failure(self, error: Optional[str] = None) -> None:
        """Count a failed remote call. The reachability flag is not changed."""
        with self._lock:
            self._state.failed_calls += 1
            self._state.consecutive_failures += 1
            self._state.last_failure = datetime.now()
            self._state.error_message = error

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for the probe outcome.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "sync_enabled": self.sync_enabled,
            "probed_at": self._state.probed_at.isoformat() if self._state.probed_at else None,
            "last_success": self._state.last_success.isoformat() if self._state.last_success else None,
            "last_failure": self._state.last_failure.isoformat() if self._state.last_failure else None,
            "successes": self._state.successful_calls,
            "failures": self._state.failed_calls,
            "consecutive_failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
