# =============================================================================
# edu_core/services/base_service.py
# Base Service Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from edu_core.errors import RemoteRequestFailed
from edu_core.logging import LogContext, get_logger
from edu_core.models import UserType
from edu_core.utils.ids import new_local_id

if TYPE_CHECKING:
    from edu_core.app_context import AppContext


@dataclass
class ServiceResult:
    """
    Standard result container for service operations.

    Provides consistent structure for all service method returns.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        """Create a failed result"""
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )


class BaseService(ABC):
    """
    Abstract base class for all domain services.

    Services mutate local collections first and then mirror the change to
    the remote on a best-effort basis.

    Usage:
        class MyService(BaseService):
            async def do_something(self) -> ServiceResult:
                with self.log_operation("Doing something"):
                    items = self.records.get_list("things")
                    ...
                    self.records.set("things", items)
                await self.mirror("/things", "POST", thing)
                return ServiceResult.ok(thing)
    """

    def __init__(self, ctx: AppContext):
        self.ctx = ctx
        self.logger = get_logger(self.__class__.__name__)

    @property
    def records(self):
        return self.ctx.records

    @property
    def references(self):
        return self.ctx.references

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a logging context for an operation.

        Usage:
            with self.log_operation("Saving lesson"):
                self.records.set("lessons", lessons)
        """
        return LogContext(self.logger, operation)

    def new_id(self) -> int:
        return new_local_id()

    def require_user(self, *types: UserType) -> Optional[ServiceResult]:
        """Return a failed result unless someone of an allowed type is logged in."""
        user = self.ctx.current_user
        if user is None:
            return ServiceResult.fail("You must be logged in first", "NOT_LOGGED_IN")
        if types and user.type not in types:
            return ServiceResult.fail("Not allowed for this account type", "FORBIDDEN")
        return None

    @staticmethod
    def find_index(items: List[Dict[str, Any]], record_id: Any) -> int:
        """Index of the record with ``record_id``, or -1."""
        for index, item in enumerate(items):
            if item.get("id") == record_id:
                return index
        return -1

    async def mirror(self, endpoint: str, method: str = "POST", body: Any = None) -> Any:
        """
        Best-effort copy of a local mutation to the remote.

        Skipped when sync is disabled. A failure has already been logged and
        shown by the client; it never undoes the local write.

        Returns:
            The remote response, or None if skipped or failed
        """
        if not self.ctx.sync_enabled:
            return None
        try:
            return await self.ctx.client.request(endpoint, method, body)
        except RemoteRequestFailed as e:
            self.logger.warning(f"Mirror {method} {endpoint} failed; local change kept: {e.message}")
            return None
