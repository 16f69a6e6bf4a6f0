# =============================================================================
# sync_core/errors/__init__.py
# Centralized Error Handling for the Sync Layer
# =============================================================================

from .exceptions import (
    ErrorKind,
    SyncError,
    FetchTimeoutError,
    FetchCancelledError,
    TransportError,
    BackendUnavailableError,
    UnauthenticatedError,
    UnknownSyncError,
    ConfigurationError,
)

from .handlers import (
    classify_error,
    handle_error,
)

__all__ = [
    # Exceptions
    "ErrorKind",
    "SyncError",
    "FetchTimeoutError",
    "FetchCancelledError",
    "TransportError",
    "BackendUnavailableError",
    "UnauthenticatedError",
    "UnknownSyncError",
    "ConfigurationError",
    # Handlers
    "classify_error",
    "handle_error",
]
