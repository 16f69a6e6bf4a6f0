# =============================================================================
# sync_core/sync/context.py
# Explicitly Owned Context for Monitor, Cache and Resources
# =============================================================================
"""
SyncContext - the single object an application constructs at start-up and
disposes at shutdown. It replaces module-level singletons: consumers receive
the context (or the adapters built on it) instead of importing globals.

Lifecycle:
    context = SyncContext(config, probe_fn=gateway.probe,
                          refresh_session=gateway.refresh_session)
    context.init(signals)          # inside the running event loop
    handle = context.subscribe("clients:list", fetch_clients, ttl=config.list_ttl)
    ...
    handle.close()                 # unmount
    await context.dispose()        # shutdown / test teardown
"""

from __future__ import annotations
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from sync_core.config import SyncConfig
from .connection_monitor import ConnectionEvent, ConnectionMonitor, ConnectionState
from .fetch_coordinator import FetchCoordinator, FetchFn
from .host_signals import HostSignals
from .resource_cache import ResourceCache
from .subscription import SubscriptionList
from .synced_resource import ResourceHandle, ResourceSnapshot, SyncedResource

logger = logging.getLogger(__name__)


class SyncContext:
    """Owner of the shared ConnectionMonitor, ResourceCache and FetchCoordinator."""

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        probe_fn: Optional[Callable[[], Awaitable[Any]]] = None,
        refresh_session: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
        scheduler=None,
        monitor: Optional[ConnectionMonitor] = None,
    ):
        self.config = config or SyncConfig()
        self.clock = clock

        if monitor is None:
            if probe_fn is None:
                raise ValueError("SyncContext needs either probe_fn or monitor")
            monitor = ConnectionMonitor(
                probe_fn,
                self.config,
                refresh_session=refresh_session,
                clock=clock,
                scheduler=scheduler,
            )
        self.monitor = monitor
        self.cache = ResourceCache(clock=clock)
        self.coordinator = FetchCoordinator(self.cache, self.config, monitor=self.monitor, clock=clock)

        self._resources: Dict[str, SyncedResource] = {}
        self._handles: Dict[str, List[ResourceHandle]] = {}
        self._subscriptions = SubscriptionList()
        self._remove_fetch_listener: Optional[Callable[[], None]] = None
        self._initialized = False
        self._disposed = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def init(self, signals: Optional[HostSignals] = None, start_monitoring: bool = True) -> None:
        """
        Wire listeners and start probing. Call from within the event loop.

        Args:
            signals: Host event source to attach the monitor to
            start_monitoring: Whether to start the periodic probe
        """
        if self._initialized:
            return

        self._subscriptions.add(self.monitor.subscribe(self._on_connection_event))
        self._remove_fetch_listener = self.coordinator.add_listener(self._on_fetch_state)
        if signals is not None:
            self.monitor.attach(signals)
        if start_monitoring:
            self.monitor.start()

        self._initialized = True
        logger.info("SyncContext initialized")

    async def dispose(self) -> None:
        """Cancel fetches, background loads, timers and subscriptions."""
        if self._disposed:
            return
        self._disposed = True

        resources = list(self._resources.values())
        for resource in resources:
            resource.cancel()
        self.coordinator.cancel_all()
        for resource in resources:
            await resource.settled()

        self._subscriptions.cancel_all()
        if self._remove_fetch_listener is not None:
            self._remove_fetch_listener()
        await self.monitor.dispose()

        self._resources.clear()
        self._handles.clear()
        logger.info("SyncContext disposed")

    # =========================================================================
    # RESOURCES
    # =========================================================================

    def resource(self, key: str, fetch_fn: FetchFn, ttl: Optional[float] = None) -> SyncedResource:
        """Shared SyncedResource for ``key``; created on first request."""
        resource = self._resources.get(key)
        if resource is None:
            resource = SyncedResource(
                key,
                fetch_fn,
                ttl=ttl if ttl is not None else self.config.list_ttl,
                coordinator=self.coordinator,
                cache=self.cache,
            )
            self._resources[key] = resource
        return resource

    def subscribe(
        self,
        key: str,
        fetch_fn: FetchFn,
        ttl: Optional[float] = None,
        on_change: Optional[Callable[[ResourceSnapshot], None]] = None,
    ) -> ResourceHandle:
        """
        Mount a consumer on ``key``.

        Starts a background load unless the cached value is fresh. Consumers
        requesting the same key share one resource and one fetch.
        """
        if self._disposed:
            raise RuntimeError("SyncContext has been disposed")

        resource = self.resource(key, fetch_fn, ttl)
        listener = resource.add_listener(on_change) if on_change is not None else None
        handle = ResourceHandle(resource, self._release_handle, listener=listener)
        self._handles.setdefault(key, []).append(handle)

        if not resource.is_fresh:
            resource.schedule()
        return handle

    def _release_handle(self, handle: ResourceHandle) -> None:
        handles = self._handles.get(handle.key, [])
        if handle in handles:
            handles.remove(handle)
        if handles:
            return

        # Last consumer gone: cancel its fetch and drop the resource.
        # The cache entry survives as a fallback for the next mount.
        self._handles.pop(handle.key, None)
        resource = self._resources.pop(handle.key, None)
        if resource is not None:
            resource.cancel()
            logger.debug(f"Released resource {handle.key}")

    def live_keys(self) -> List[str]:
        return list(self._resources)

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    def invalidate(self, *keys: str) -> List[str]:
        """
        Mark ``keys`` non-fresh after a mutation and refresh the live ones.

        The mapping from mutation to affected keys belongs to the caller.
        """
        hit = self.cache.invalidate(*keys)
        for key in keys:
            resource = self._resources.get(key)
            if resource is not None:
                resource.refresh_if_stale()
        return hit

    def invalidate_prefix(self, prefix: str) -> List[str]:
        """Invalidate every cached or live key that starts with ``prefix``."""
        keys = set(self.cache.keys(prefix)) | {k for k in self._resources if k.startswith(prefix)}
        return self.invalidate(*sorted(keys))

    def set(self, key: str, value: Any) -> None:
        """Write a value produced by a mutation straight into the cache."""
        self.cache.set(key, value)
        resource = self._resources.get(key)
        if resource is not None:
            resource.notify()

    # =========================================================================
    # EVENT WIRING
    # =========================================================================

    def _on_fetch_state(self, key: str) -> None:
        resource = self._resources.get(key)
        if resource is not None:
            resource.notify()

    def _on_connection_event(self, event: ConnectionEvent, state: ConnectionState) -> None:
        if event not in (ConnectionEvent.VISIBLE, ConnectionEvent.RESTORED):
            return
        for resource in list(self._resources.values()):
            resource.refresh_if_stale()

    def get_status_display(self) -> Dict[str, Any]:
        return {
            "connection": self.monitor.get_status_display(),
            "cache": self.cache.get_info(),
            "live_resources": self.live_keys(),
        }
