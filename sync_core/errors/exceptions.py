# =============================================================================
# sync_core/errors/exceptions.py
# Custom Exception Hierarchy for the Sync Layer
# =============================================================================

from enum import Enum
from typing import Optional, Dict, Any


class ErrorKind(Enum):
    """Failure kinds a fetch or probe can settle with."""
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    TRANSPORT = "transport"
    UNAUTHENTICATED = "unauthenticated"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """
    Base exception for all sync layer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "SYNC_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from by retrying
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "SYNC_000"
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
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# FETCH / PROBE EXCEPTIONS
# =============================================================================

class FetchTimeoutError(SyncError):
    """Raised when a fetch or probe exceeds its bounded wait"""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        if timeout is not None:
            details["timeout"] = timeout

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )


class FetchCancelledError(SyncError):
    """Raised when a fetch was superseded or explicitly cancelled"""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Fetch cancelled", key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key

        super().__init__(
            message=message,
            code="SYNC_002",
            details=details,
            **kwargs,
        )


class TransportError(SyncError):
    """Raised when the network or the backend reports a failure"""

    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        backend_code: Optional[str] = None,
        status: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if backend_code:
            details["backend_code"] = backend_code
        if status is not None:
            details["status"] = status

        super().__init__(
            message=message,
            code=kwargs.pop("code", "SYNC_003"),
            details=details,
            **kwargs,
        )


class BackendUnavailableError(TransportError):
    """Raised when a fetch is skipped because the backend is believed unreachable"""

    def __init__(self, message: str = "Backend unreachable", **kwargs):
        super().__init__(message=message, code="SYNC_005", **kwargs)


class UnauthenticatedError(SyncError):
    """Raised when the session is invalid; never retried by backoff"""

    kind = ErrorKind.UNAUTHENTICATED

    def __init__(
        self,
        message: str = "Session is no longer valid",
        backend_code: Optional[str] = None,
        status: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if backend_code:
            details["backend_code"] = backend_code
        if status is not None:
            details["status"] = status

        super().__init__(
            message=message,
            code="SYNC_004",
            details=details,
            recoverable=False,
            **kwargs,
        )


class UnknownSyncError(SyncError):
    """Raised for failures that fit no other kind"""

    def __init__(self, message: str, error_type: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if error_type:
            details["error_type"] = error_type

        super().__init__(
            message=message,
            code="SYNC_000",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(SyncError):
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
