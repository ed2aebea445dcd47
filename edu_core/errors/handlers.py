# =============================================================================
# edu_core/errors/handlers.py
# Error Handling Utilities for the EduHub offline core
# =============================================================================

from __future__ import annotations
import functools
import inspect
import traceback
from typing import Optional, Callable, TypeVar, Any

from edu_core.logging import get_logger
from edu_core.ui.notifications import LogNotifier, NoticeLevel, Notifier
from .exceptions import EduCoreError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    notifier: Optional[Notifier] = None,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Logs the error once and shows at most one transient notice.

    Args:
        error: The exception to handle
        notifier: Where user notices go (defaults to the log)
        show_user_message: Whether to display a notice to the user
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, EduCoreError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {error}",
            extra={"details": details},
        )

    if show_user_message:
        target = notifier or LogNotifier()
        if recoverable:
            target.notify(message, NoticeLevel.ERROR)
        else:
            target.notify(f"Critical error: {message}", NoticeLevel.ERROR)


class ErrorContext:
    """
    Context manager for error handling with automatic logging and user feedback.

    Usage:
        with ErrorContext("Saving lesson", notifier=ctx.notifier):
            records.set(Collection.LESSONS.value, lessons)

        # On error, logs and shows: "Error during: Saving lesson"
    """

    def __init__(
        self,
        operation: str,
        notifier: Optional[Notifier] = None,
        recoverable: bool = True,
        show_success: bool = False,
        success_message: Optional[str] = None,
    ):
        self.operation = operation
        self.notifier = notifier
        self.recoverable = recoverable
        self.show_success = show_success
        self.success_message = success_message

    def __enter__(self) -> ErrorContext:
        logger.info(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            if isinstance(exc_val, EduCoreError):
                handle_error(exc_val, notifier=self.notifier)
            else:
                handle_error(
                    exc_val,
                    notifier=self.notifier,
                    user_message=f"Error during: {self.operation}",
                )

            # Suppress exception if recoverable
            return self.recoverable

        logger.info(f"Completed: {self.operation}")
        if self.show_success and self.notifier is not None:
            self.notifier.notify(
                self.success_message or f"{self.operation} completed",
                NoticeLevel.SUCCESS,
            )
        return False


def error_boundary(
    default_return: Any = None,
    log: bool = True,
):
    """
    Decorator that turns any exception into ``default_return``.

    Works on plain and ``async`` functions. Errors are logged, never shown.

    Usage:
        @error_boundary(default_return=None)
        async def resolve(key):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if log:
                        logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                    return default_return

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
                return default_return

        return wrapper

    return decorator
