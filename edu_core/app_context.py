# =============================================================================
# edu_core/app_context.py
# Process-wide owner of stores, transport and session state
# =============================================================================
"""
AppContext wires the storage and sync components together and holds the
session flags (current user, sync enabled). Nothing else opens the SQLite
files or the HTTP session.

Usage:
------
    ctx = AppContext.create(notifier=StreamlitNotifier())
    await ctx.start()                # open stores, probe, first pull, timer
    result = await ctx.accounts.login_student("Sara", "secret")
    ...
    await ctx.shutdown()
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Any, Dict, Optional

import requests

from edu_core.api.sync_client import SyncClient
from edu_core.config import AppSettings, load_settings
from edu_core.errors import ErrorContext
from edu_core.logging import get_logger, setup_logging
from edu_core.models import Collection, UserSession
from edu_core.offline.blob_store import BlobStore
from edu_core.offline.connection_manager import ConnectionManager
from edu_core.offline.record_store import RecordStore
from edu_core.offline.reference_lifecycle import ReferenceLifecycle
from edu_core.offline.sync_coordinator import SyncCoordinator
from edu_core.ui.notifications import LogNotifier, Notifier

if TYPE_CHECKING:
    from edu_core.services import AccountService, LessonService, MessagingService, WalletService

logger = get_logger(__name__)


class AppContext:
    """Owns every stateful component of the offline core."""

    def __init__(
        self,
        settings: AppSettings,
        notifier: Optional[Notifier] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings
        self.notifier = notifier or LogNotifier()
        self.connection = ConnectionManager()
        self.records = RecordStore(settings.record_db_path, notifier=self.notifier)
        self.blobs = BlobStore(settings.blob_db_path, handle_dir=settings.handle_dir)
        self.client = SyncClient.from_settings(
            settings,
            connection=self.connection,
            notifier=self.notifier,
            session=session,
        )
        self.coordinator = SyncCoordinator(
            self.client,
            self.records,
            self.connection,
            interval=settings.sync_interval,
            health_endpoint=settings.health_endpoint,
        )
        self.references = ReferenceLifecycle(self.blobs, self.notifier)
        self.current_user: Optional[UserSession] = None

        # Lazily created services
        self._accounts = None
        self._lessons = None
        self._messaging = None
        self._wallet = None

    @classmethod
    def create(
        cls,
        settings: Optional[AppSettings] = None,
        notifier: Optional[Notifier] = None,
        session: Optional[requests.Session] = None,
        **overrides: Any,
    ) -> AppContext:
        """Build a context from explicit settings or ``load_settings()``."""
        resolved = settings or load_settings(overrides or None)
        return cls(resolved, notifier=notifier, session=session)

    @property
    def sync_enabled(self) -> bool:
        return self.connection.sync_enabled

    # =========================================================================
    # SERVICES
    # =========================================================================

    @property
    def accounts(self) -> AccountService:
        if self._accounts is None:
            from edu_core.services.account_service import AccountService
            self._accounts = AccountService(self)
        return self._accounts

    @property
    def lessons(self) -> LessonService:
        if self._lessons is None:
            from edu_core.services.lesson_service import LessonService
            self._lessons = LessonService(self)
        return self._lessons

    @property
    def messaging(self) -> MessagingService:
        if self._messaging is None:
            from edu_core.services.messaging_service import MessagingService
            self._messaging = MessagingService(self)
        return self._messaging

    @property
    def wallet(self) -> WalletService:
        if self._wallet is None:
            from edu_core.services.wallet_service import WalletService
            self._wallet = WalletService(self)
        return self._wallet

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def bootstrap(self) -> None:
        """
        Open both stores and restore the saved login, without the remote.

        Raises:
            StorageUnavailable: If either store cannot be opened
        """
        with ErrorContext("Opening local storage", notifier=self.notifier, recoverable=False):
            self.records.initialize()
            await self.blobs.open()
        self.restore_session()

    async def start(self) -> None:
        """Bootstrap, seed the support roster, then start syncing."""
        await self.bootstrap()
        await self.accounts.initialize_support_staff()
        await self.coordinator.start()
        logger.info(f"App context started. Sync enabled: {self.sync_enabled}")

    async def shutdown(self) -> None:
        """Stop syncing and release every resource. Application exit only."""
        await self.coordinator.stop()
        await self.blobs.close()
        self.records.close()
        self.client.close()
        logger.info("App context shut down")

    # =========================================================================
    # SESSION
    # =========================================================================

    def set_current_user(self, user: UserSession) -> None:
        """Start a session and remember it across restarts."""
        self.current_user = user
        self.records.set(Collection.USER_SESSION.value, user.to_dict())
        logger.info(f"Logged in: {user.name} ({user.type.value})")

    def clear_current_user(self) -> None:
        if self.current_user is not None:
            logger.info(f"Logged out: {self.current_user.name}")
        self.current_user = None
        self.records.delete(Collection.USER_SESSION.value)

    def restore_session(self) -> Optional[UserSession]:
        """Reload the saved session; a damaged one is discarded."""
        saved: Optional[Dict[str, Any]] = self.records.get(Collection.USER_SESSION.value)
        if not saved:
            return None
        try:
            self.current_user = UserSession.from_dict(saved)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Discarding unreadable saved session: {e}")
            self.records.delete(Collection.USER_SESSION.value)
            self.current_user = None
        return self.current_user

    def get_status_display(self) -> Dict[str, Any]:
        """Connection and sync status for UI display."""
        return {
            "user": self.current_user.name if self.current_user else None,
            "connection": self.connection.get_status_display(),
            "sync": self.coordinator.get_status_display(),
        }


# Singleton accessor
_app_context: Optional[AppContext] = None


def get_app_context(notifier: Optional[Notifier] = None) -> AppContext:
    """Get the global AppContext instance (not started)."""
    global _app_context
    if _app_context is None:
        settings = load_settings()
        setup_logging(log_dir=settings.log_dir)
        _app_context = AppContext.create(settings, notifier=notifier)
    return _app_context
