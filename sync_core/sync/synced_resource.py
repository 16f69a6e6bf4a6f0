# =============================================================================
# sync_core/sync/synced_resource.py
# Consumer-Facing View over Cache + Fetch State for One Key
# =============================================================================
"""
SyncedResource - the unit a screen depends on ("the list of clients",
"dashboard statistics", "a user's notifications").

Consumers never touch CacheEntry or FetchGuard; they read a
ResourceSnapshot ``{data, loading, refreshing, error, is_stale}``.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar
import logging

from sync_core.errors import ErrorKind
from .fetch_coordinator import FetchCoordinator, FetchFn, FetchOutcome
from .resource_cache import ResourceCache
from .subscription import Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ResourceSnapshot(Generic[T]):
    """What a consumer renders."""
    key: str
    data: Optional[T]
    loading: bool
    refreshing: bool
    error: Optional[str]
    error_kind: Optional[ErrorKind]
    is_stale: bool
    fetched_at: Optional[float]


class SyncedResource(Generic[T]):
    """
    Composition of one cache entry and one fetch guard for ``key``.

    Usage:
        resource = SyncedResource("dashboard:stats", fetch_stats, ttl=30,
                                  coordinator=coordinator, cache=cache)
        await resource.load()
        snapshot = resource.snapshot()
    """

    def __init__(
        self,
        key: str,
        fetch_fn: FetchFn,
        ttl: float,
        coordinator: FetchCoordinator,
        cache: ResourceCache,
    ):
        self.key = key
        self.ttl = ttl
        self._fetch_fn = fetch_fn
        self._coordinator = coordinator
        self._cache = cache
        self._listeners: List[Callable[[ResourceSnapshot], None]] = []
        self._pending: Optional[asyncio.Future] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def data(self) -> Optional[T]:
        entry = self._cache.get(self.key)
        return entry.value if entry is not None else None

    def _busy(self) -> bool:
        pending = self._pending is not None and not self._pending.done()
        return pending or self._coordinator.is_in_flight(self.key)

    @property
    def loading(self) -> bool:
        """First fetch outstanding and nothing cached yet."""
        return self._busy() and self.key not in self._cache

    @property
    def refreshing(self) -> bool:
        """Background refresh while stale data is shown."""
        return self._busy() and self.key in self._cache

    @property
    def error(self) -> Optional[str]:
        error = self._coordinator.last_error(self.key)
        return error.message if error is not None else None

    @property
    def is_stale(self) -> bool:
        return self._cache.is_stale(self.key, self.ttl)

    @property
    def is_fresh(self) -> bool:
        return self._cache.is_fresh(self.key, self.ttl)

    def snapshot(self) -> ResourceSnapshot[T]:
        entry = self._cache.get(self.key)
        error = self._coordinator.last_error(self.key)
        in_flight = self._busy()
        return ResourceSnapshot(
            key=self.key,
            data=entry.value if entry is not None else None,
            loading=in_flight and entry is None,
            refreshing=in_flight and entry is not None,
            error=error.message if error is not None else None,
            error_kind=error.kind if error is not None else None,
            is_stale=self.is_stale,
            fetched_at=entry.fetched_at if entry is not None else None,
        )

    # =========================================================================
    # FETCHING
    # =========================================================================

    async def load(self, force: bool = False) -> FetchOutcome:
        """Fetch unless fresh, in flight or throttled (see FetchCoordinator.run)."""
        return await self._coordinator.run(self.key, self._fetch_fn, force=force, ttl=self.ttl)

    async def refresh(self, force: bool = True) -> FetchOutcome:
        """Manual refresh; forced by default, which bypasses the throttle."""
        if force:
            self._coordinator.reset_throttle(self.key)
        return await self.load(force=force)

    def schedule(self, force: bool = False) -> asyncio.Future:
        """Start a load in the background and remember it for settled()."""
        if not force and self._pending is not None and not self._pending.done():
            return self._pending
        self._pending = asyncio.ensure_future(self.load(force=force))
        self._pending.add_done_callback(self._on_pending_done)
        return self._pending

    def _on_pending_done(self, future: asyncio.Future) -> None:
        if future is self._pending:
            self.notify()

    async def settled(self) -> None:
        """Wait for the most recent background load, if any."""
        pending = self._pending
        if pending is not None:
            await asyncio.gather(pending, return_exceptions=True)

    def refresh_if_stale(self) -> Optional[asyncio.Future]:
        """
        Visibility/reconnect trigger: bypass the throttle only when the cached
        value is actually past its TTL (or was never fetched).
        """
        if self.key in self._cache and not self.is_stale:
            return None
        logger.debug(f"Refreshing stale resource {self.key}")
        return self.schedule(force=True)

    def cancel(self) -> bool:
        """Cancel this key's outstanding fetch and any background load."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        return self._coordinator.cancel(self.key)

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_listener(self, callback: Callable[[ResourceSnapshot], None]) -> Subscription:
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription(_remove)

    def notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in resource listener for {self.key}: {e}")


class ResourceHandle(Generic[T]):
    """
    One consumer's subscription to a shared SyncedResource.

    Returned by SyncContext.subscribe(); ``close()`` on unmount.
    """

    def __init__(
        self,
        resource: SyncedResource[T],
        on_close: Callable[[ResourceHandle], None],
        listener: Optional[Subscription] = None,
    ):
        self.resource = resource
        self._on_close = on_close
        self._listener = listener
        self.closed = False

    @property
    def key(self) -> str:
        return self.resource.key

    @property
    def data(self) -> Optional[T]:
        return self.resource.data

    @property
    def loading(self) -> bool:
        return self.resource.loading

    @property
    def refreshing(self) -> bool:
        return self.resource.refreshing

    @property
    def error(self) -> Optional[str]:
        return self.resource.error

    @property
    def is_stale(self) -> bool:
        return self.resource.is_stale

    def snapshot(self) -> ResourceSnapshot[T]:
        return self.resource.snapshot()

    async def refresh(self, force: bool = True) -> FetchOutcome:
        return await self.resource.refresh(force=force)

    async def settled(self) -> None:
        await self.resource.settled()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._listener is not None:
            self._listener.cancel()
        self._on_close(self)
