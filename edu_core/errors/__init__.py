# =============================================================================
# edu_core/errors/__init__.py
# Centralized Error Handling for the EduHub offline core
# =============================================================================

from .exceptions import (
    EduCoreError,
    StorageUnavailable,
    ReadFailed,
    WriteFailed,
    DeleteFailed,
    ParseFailed,
    RemoteRequestFailed,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "EduCoreError",
    "StorageUnavailable",
    "ReadFailed",
    "WriteFailed",
    "DeleteFailed",
    "ParseFailed",
    "RemoteRequestFailed",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "ErrorContext",
    "error_boundary",
]
