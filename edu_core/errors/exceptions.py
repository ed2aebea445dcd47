# =============================================================================
# edu_core/errors/exceptions.py
# Custom Exception Hierarchy for the EduHub offline core
# =============================================================================

from typing import Optional, Dict, Any


class EduCoreError(Exception):
    """
    Base exception for all storage and synchronization errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the session can continue after this error
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "EDU_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# LOCAL STORAGE EXCEPTIONS
# =============================================================================

class StorageUnavailable(EduCoreError):
    """Raised when the local storage engine cannot be initialised"""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


class _StorageOperationError(EduCoreError):
    """Shared constructor for single-operation storage failures"""

    error_code = "STORE_000"

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if key is not None:
            details["key"] = key

        super().__init__(
            message=message,
            code=self.error_code,
            details=details,
            **kwargs,
        )


class ReadFailed(_StorageOperationError):
    """Raised when a single read from local storage fails"""

    error_code = "STORE_002"


class WriteFailed(_StorageOperationError):
    """Raised when a single write to local storage fails"""

    error_code = "STORE_003"


class DeleteFailed(_StorageOperationError):
    """Raised when a single delete from local storage fails"""

    error_code = "STORE_004"


class ParseFailed(_StorageOperationError):
    """Persisted JSON could not be decoded; callers treat it as absence"""

    error_code = "STORE_005"


# =============================================================================
# REMOTE EXCEPTIONS
# =============================================================================

class RemoteRequestFailed(EduCoreError):
    """Raised on any transport error or non-success response from the remote"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method

        super().__init__(
            message=message,
            code="REMOTE_001",
            details=details,
            **kwargs,
        )
        self.status_code = status_code
        self.endpoint = endpoint
        self.method = method


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(EduCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
