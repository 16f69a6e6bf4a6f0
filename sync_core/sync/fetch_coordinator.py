# =============================================================================
# sync_core/sync/fetch_coordinator.py
# In-Flight Deduplication, Throttling and Cancellation for Reads
# =============================================================================
"""
FetchCoordinator - wraps asynchronous reads keyed by resource.

Guarantees:
- at most one live fetch per key (a forced run supersedes the previous one)
- non-forced runs are throttled to one per ``throttle_window``
- a superseded fetch never writes into the cache
- every attempt is bounded by ``fetch_timeout``
- failures leave the existing cache entry untouched (stale fallback)
"""

from __future__ import annotations
import asyncio
import itertools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from sync_core.config import SyncConfig
from sync_core.errors import (
    ErrorKind,
    SyncError,
    FetchCancelledError,
    FetchTimeoutError,
    BackendUnavailableError,
    classify_error,
)
from .resource_cache import ResourceCache

logger = logging.getLogger(__name__)


class CancelToken:
    """
    Per-attempt marker used to discard results of superseded fetches.

    Cancellation is cooperative: the fetch keeps running, but its result is
    ignored. Transports that can abort register ``on_cancel`` callbacks.
    """

    def __init__(self, key: str, generation: int):
        self.key = key
        self.generation = generation
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a hard-abort hook; runs immediately if already cancelled."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in abort callback for {self.key}: {e}")

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise FetchCancelledError(key=self.key)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"CancelToken({self.key!r}, gen={self.generation}, {state})"


FetchFn = Callable[[CancelToken], Awaitable[Any]]


@dataclass
class FetchGuard:
    """Transient per-key state while a fetch is outstanding."""
    token: CancelToken
    last_attempt_at: float
    in_flight: bool = True


class FetchStatus(Enum):
    """How a run() call settled."""
    FRESH = "fresh"           # cache fresh, fetch not needed
    IN_FLIGHT = "in_flight"   # joined an outstanding fetch
    THROTTLED = "throttled"   # inside the throttle window
    OFFLINE = "offline"       # backend believed unreachable
    OK = "ok"
    FAILED = "failed"
    CANCELLED = "cancelled"   # superseded or cancelled; nothing applied


@dataclass
class FetchOutcome:
    status: FetchStatus
    value: Any = None
    error: Optional[SyncError] = None

    @property
    def fetched(self) -> bool:
        """True when this call actually invoked the fetch function."""
        return self.status in (FetchStatus.OK, FetchStatus.FAILED, FetchStatus.CANCELLED)


class FetchCoordinator:
    """
    Usage:
        coordinator = FetchCoordinator(cache, config, monitor=monitor)
        outcome = await coordinator.run("clients:list", fetch_clients, ttl=60)
    """

    def __init__(
        self,
        cache: ResourceCache,
        config: Optional[SyncConfig] = None,
        monitor=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.config = config or SyncConfig()
        self.monitor = monitor
        self._clock = clock
        self._guards: Dict[str, FetchGuard] = {}
        self._last_attempt: Dict[str, float] = {}
        self._errors: Dict[str, SyncError] = {}
        self._generation = itertools.count(1)
        self._listeners: List[Callable[[str], None]] = []

    # =========================================================================
    # STATE QUERIES
    # =========================================================================

    def is_in_flight(self, key: str) -> bool:
        guard = self._guards.get(key)
        return guard is not None and guard.in_flight

    def last_error(self, key: str) -> Optional[SyncError]:
        return self._errors.get(key)

    def current_token(self, key: str) -> Optional[CancelToken]:
        guard = self._guards.get(key)
        return guard.token if guard else None

    def add_listener(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Called with the key whenever its in-flight/error state changes."""
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    def _notify(self, key: str) -> None:
        for callback in list(self._listeners):
            try:
                callback(key)
            except Exception as e:
                logger.error(f"Error in fetch state callback for {key}: {e}")

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(
        self,
        key: str,
        fetch_fn: FetchFn,
        force: bool = False,
        ttl: Optional[float] = None,
    ) -> FetchOutcome:
        """
        Fetch ``key`` unless the cache, an in-flight fetch or the throttle
        already covers it.

        Args:
            key: Resource key
            fetch_fn: ``async def fetch(token)`` returning the new value
            force: Bypass freshness, throttle and reachability checks, and
                supersede any outstanding fetch
            ttl: Freshness window; None disables the freshness short-circuit

        Returns:
            FetchOutcome describing what happened
        """
        if not force and ttl is not None and self.cache.is_fresh(key, ttl):
            return FetchOutcome(FetchStatus.FRESH, value=self.cache.get(key).value)

        previous = self._guards.get(key)
        if previous is not None and previous.in_flight and not force:
            return FetchOutcome(FetchStatus.IN_FLIGHT)

        now = self._clock()
        last = self._last_attempt.get(key)
        if not force and last is not None and now - last < self.config.throttle_window:
            logger.debug(f"Fetch for {key} throttled ({now - last:.3f}s since last attempt)")
            return FetchOutcome(FetchStatus.THROTTLED)

        if not force and self.monitor is not None and not self.monitor.is_reachable:
            error = BackendUnavailableError(details={"key": key})
            self._errors[key] = error
            self._notify(key)
            return FetchOutcome(FetchStatus.OFFLINE, error=error)

        if previous is not None:
            logger.debug(f"Superseding outstanding fetch for {key}")
            previous.token.cancel()

        token = CancelToken(key, next(self._generation))
        self._guards[key] = FetchGuard(token=token, last_attempt_at=now)
        self._last_attempt[key] = now
        self._notify(key)

        value = None
        error: Optional[SyncError] = None
        try:
            value = await asyncio.wait_for(fetch_fn(token), timeout=self.config.fetch_timeout)
        except asyncio.TimeoutError:
            error = FetchTimeoutError(
                f"Fetch for {key} exceeded {self.config.fetch_timeout}s",
                key=key,
                timeout=self.config.fetch_timeout,
            )
        except Exception as e:
            error = classify_error(e)
        finally:
            current = self._release(key, token)

        if not current or token.cancelled:
            logger.debug(f"Discarding result of superseded fetch {token!r}")
            return FetchOutcome(FetchStatus.CANCELLED)

        if error is None:
            self.cache.set(key, value)
            self._errors.pop(key, None)
            if self.monitor is not None:
                self.monitor.report_success()
            self._notify(key)
            return FetchOutcome(FetchStatus.OK, value=value)

        if error.kind is ErrorKind.CANCELLED:
            self._notify(key)
            return FetchOutcome(FetchStatus.CANCELLED)

        if error.kind is ErrorKind.TIMEOUT:
            # Let the transport abort whatever the timed-out fetch left running
            token.cancel()

        logger.warning(f"Fetch for {key} failed: [{error.code}] {error.message}")
        self._errors[key] = error
        if self.monitor is not None:
            if error.kind in (ErrorKind.TIMEOUT, ErrorKind.TRANSPORT):
                self.monitor.report_failure(error)
            elif error.kind is ErrorKind.UNAUTHENTICATED:
                self.monitor.report_unauthenticated(error)
        self._notify(key)
        return FetchOutcome(FetchStatus.FAILED, error=error)

    def _release(self, key: str, token: CancelToken) -> bool:
        """Drop the guard if ``token`` still owns it. Returns whether it did."""
        guard = self._guards.get(key)
        if guard is None or guard.token is not token:
            return False
        del self._guards[key]
        return True

    # =========================================================================
    # CANCELLATION / THROTTLE CONTROL
    # =========================================================================

    def cancel(self, key: str) -> bool:
        """Cancel the outstanding fetch for ``key``; its result will be ignored."""
        guard = self._guards.pop(key, None)
        if guard is None:
            return False
        guard.token.cancel()
        # An attempt that never settled does not count toward the throttle
        self._last_attempt.pop(key, None)
        self._notify(key)
        return True

    def cancel_all(self) -> int:
        keys = list(self._guards)
        for key in keys:
            self.cancel(key)
        return len(keys)

    def reset_throttle(self, key: str) -> None:
        self._last_attempt.pop(key, None)

    def clear_error(self, key: str) -> None:
        if self._errors.pop(key, None) is not None:
            self._notify(key)
