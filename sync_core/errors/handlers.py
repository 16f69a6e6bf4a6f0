# =============================================================================
# sync_core/errors/handlers.py
# Error Classification and Handling Utilities
# =============================================================================

from __future__ import annotations
import asyncio
import traceback
from typing import Optional

import httpx
from postgrest.exceptions import APIError

from sync_core.logging import get_logger
from .exceptions import (
    SyncError,
    FetchTimeoutError,
    TransportError,
    UnauthenticatedError,
    UnknownSyncError,
)

logger = get_logger(__name__)

# PostgREST codes for a rejected or expired JWT
AUTH_ERROR_CODES = {"PGRST301", "PGRST302", "401", "403"}
AUTH_STATUSES = {401, 403}


def _status_of(error: Exception) -> Optional[int]:
    """Best-effort HTTP status extraction from transport/auth errors."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    return None


def classify_error(error: BaseException) -> SyncError:
    """
    Map an arbitrary exception onto the sync error hierarchy.

    Args:
        error: Exception raised by a fetch, probe or mutation

    Returns:
        A SyncError subclass carrying the failure kind
    """
    if isinstance(error, SyncError):
        return error

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return FetchTimeoutError(f"Request timed out: {error}" if str(error) else "Request timed out")

    if isinstance(error, APIError):
        code = str(error.code) if error.code is not None else None
        message = error.message or str(error)
        if code in AUTH_ERROR_CODES:
            return UnauthenticatedError(message, backend_code=code)
        return TransportError(message, backend_code=code)

    status = _status_of(error)
    if status in AUTH_STATUSES:
        return UnauthenticatedError(str(error) or "Unauthorized", status=status)

    if isinstance(error, httpx.HTTPStatusError):
        return TransportError(str(error), status=status)

    if isinstance(error, (httpx.TransportError, ConnectionError, OSError)):
        return TransportError(str(error) or error.__class__.__name__)

    return UnknownSyncError(str(error) or error.__class__.__name__, error_type=error.__class__.__name__)


def handle_error(
    error: BaseException,
    log_error: bool = True,
    context: Optional[str] = None,
) -> SyncError:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        context: Short description of what was being done

    Returns:
        The classified SyncError
    """
    classified = classify_error(error)

    if log_error:
        prefix = f"{context}: " if context else ""
        details = dict(classified.details)
        if not isinstance(error, SyncError):
            details["traceback"] = traceback.format_exception_only(type(error), error)[-1].strip()
        logger.warning(
            f"{prefix}[{classified.code}] {classified.message}",
            extra={"details": details},
        )

    return classified
