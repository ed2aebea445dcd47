# =============================================================================
# edu_core/services/__init__.py
# Domain services for EduHub
# =============================================================================
"""
Domain services: every user-facing mutation of the offline core.

Each service writes the local collections first and mirrors the change to the
remote when sync is enabled. A failed mirror never undoes the local write.

Usage Example:
-------------
    ctx = AppContext.create()
    await ctx.start()

    result = await ctx.accounts.register_student(
        "Sara", "S-100", "0100000000", "pw", "pw", "first",
    )
    if result.success:
        print(result.data["id"])
"""

from .base_service import BaseService, ServiceResult
from .account_service import AccountService
from .lesson_service import LessonService
from .messaging_service import MessagingService
from .wallet_service import WalletService

__all__ = [
    # Base classes
    "BaseService",
    "ServiceResult",
    # Services
    "AccountService",
    "LessonService",
    "MessagingService",
    "WalletService",
]
