# =============================================================================
# edu_core/offline/sync_coordinator.py
# Periodic pull of authoritative collections
# =============================================================================
"""
SyncCoordinator - Probes the remote once, then keeps local copies of the
remote-owned collections fresh.

Features:
- Startup health probe deciding the session's reachability
- Sequential per-collection pull with wholesale local replace
- Per-collection failure isolation
- Fixed-interval periodic pulls (no backoff, no overlap guard)
- Sync statistics and status callbacks
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set, Tuple

from edu_core.errors import RemoteRequestFailed
from edu_core.logging import get_logger
from edu_core.models import SYNCED_COLLECTIONS, Collection
from edu_core.offline.connection_manager import ConnectionManager, SyncState
from edu_core.offline.record_store import RecordStore

if TYPE_CHECKING:
    from edu_core.api.sync_client import SyncClient

logger = get_logger(__name__)


@dataclass
class PullReport:
    """Outcome of one full pull."""
    pulled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class SyncStats:
    """Running pull statistics for the session."""
    runs: int = 0
    ticks: int = 0
    skipped_ticks: int = 0
    active_pulls: int = 0
    last_run: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failures: Dict[str, str] = field(default_factory=dict)
    total_pulled: int = 0


class SyncCoordinator:
    """
    Pulls remote-owned collections into the RecordStore.

    Usage:
        coordinator = SyncCoordinator(client, records, connection)
        await coordinator.start()   # probe, first pull, periodic timer
        ...
        await coordinator.stop()    # application shutdown only
    """

    SYNC_INTERVAL = 30.0    # Seconds between periodic pulls

    def __init__(
        self,
        client: SyncClient,
        records: RecordStore,
        connection: ConnectionManager,
        interval: Optional[float] = None,
        health_endpoint: str = "/health",
        collections: Optional[List[Tuple[str, Collection]]] = None,
    ):
        self.client = client
        self.records = records
        self.connection = connection
        self.interval = interval or self.SYNC_INTERVAL
        self.health_endpoint = health_endpoint
        self.collections = list(collections or SYNCED_COLLECTIONS)

        self._stats = SyncStats()
        self._timer: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._callbacks: List[Callable[[SyncStats], None]] = []

    @property
    def stats(self) -> SyncStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        """True while the periodic timer is alive."""
        return self._timer is not None and not self._timer.done()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def probe(self) -> SyncState:
        """
        Check the remote once and record the session's reachability.

        Returns:
            SyncState.REACHABLE or SyncState.UNREACHABLE
        """
        try:
            await self.client.request(self.health_endpoint)
        except RemoteRequestFailed as e:
            logger.warning(f"Remote not reachable, working offline: {e.message}")
            return self.connection.record_probe(reachable=False, error=e.message)

        return self.connection.record_probe(reachable=True)

    async def start(self) -> SyncState:
        """
        Probe the remote, pull once if reachable, and start the periodic timer.

        The timer is started whatever the probe says; its ticks do nothing
        while the remote is unreachable.
        """
        if self.is_running:
            return self.connection.status

        if self.connection.status == SyncState.UNPROBED:
            await self.probe()

        if self.connection.sync_enabled:
            await self.pull_all()

        self._timer = asyncio.create_task(self._periodic_loop(), name="sync-timer")
        logger.info(f"Sync coordinator started (interval {self.interval}s)")
        return self.connection.status

    async def stop(self) -> None:
        """Cancel the timer and any in-flight pulls. Application shutdown only."""
        tasks = list(self._in_flight)
        if self._timer is not None:
            tasks.append(self._timer)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timer = None
        self._in_flight.clear()
        logger.info("Sync coordinator stopped")

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> Optional[asyncio.Task]:
        """
        Fire one periodic pull as an independent task.

        Returns:
            The spawned task, or None when sync is disabled
        """
        self._stats.ticks += 1
        if not self.connection.sync_enabled:
            self._stats.skipped_ticks += 1
            return None

        task = asyncio.create_task(self.pull_all())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    # =========================================================================
    # PULL
    # =========================================================================

    async def pull_collection(self, endpoint: str, collection: Collection) -> Optional[bool]:
        """
        Pull one collection and replace the local copy.

        Returns:
            True if stored, None if the remote returned no payload

        Raises:
            RemoteRequestFailed: If the request fails
        """
        payload = await self.client.request(f"/{endpoint}", notify=False)
        if payload is None:
            return None
        return self.records.set(Collection(collection).value, payload)

    async def pull_all(self) -> PullReport:
        """
        Pull every synced collection in order.

        A failing collection is logged and recorded in the report; the rest are
        still attempted. Nothing is shown to the user.
        """
        report = PullReport()
        self._stats.runs += 1
        self._stats.active_pulls += 1
        self._stats.last_run = report.started_at

        try:
            for endpoint, collection in self.collections:
                name = Collection(collection).value
                try:
                    stored = await self.pull_collection(endpoint, collection)
                except RemoteRequestFailed as e:
                    logger.warning(f"Pull of '{name}' failed: {e.message}")
                    report.failed[name] = e.message
                    continue
                except Exception as e:
                    logger.error(f"Unexpected error pulling '{name}': {e}", exc_info=True)
                    report.failed[name] = str(e)
                    continue

                if stored is None:
                    report.skipped.append(name)
                elif stored:
                    report.pulled.append(name)
                else:
                    report.failed[name] = "local write failed"
        finally:
            self._stats.active_pulls -= 1

        report.finished_at = datetime.now()
        self._stats.total_pulled += len(report.pulled)
        self._stats.last_failures = dict(report.failed)
        if report.ok:
            self._stats.last_success = report.finished_at

        logger.info(
            f"Pull complete: {len(report.pulled)} pulled, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        self._notify_callbacks()
        return report

    # =========================================================================
    # CALLBACKS / STATUS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncStats], None]) -> None:
        """Register a callback run after every pull."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncStats], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in self._callbacks:
            try:
                callback(self._stats)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "state": self.connection.status.value,
            "running": self.is_running,
            "runs": self._stats.runs,
            "active_pulls": self._stats.active_pulls,
            "last_run": self._stats.last_run.isoformat() if self._stats.last_run else None,
            "last_success": self._stats.last_success.isoformat() if self._stats.last_success else None,
            "last_failures": dict(self._stats.last_failures),
            "total_pulled": self._stats.total_pulled,
        }
