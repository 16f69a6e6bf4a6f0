# =============================================================================
# sync_core/sync/__init__.py
# Resilient Data-Synchronization Layer
# =============================================================================
"""
Resilient Data-Synchronization Module

Decides when to fetch, whether a fetch is already in flight, what to serve
while fetching or failing, and how to detect and recover from connectivity
loss.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                          SyncContext                             │
│          (explicitly constructed, init() / dispose())            │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │            SyncedResource (one per data need)             │  │
│   │     {data, loading, refreshing, error, is_stale}          │  │
│   └──────────────────────────────────────────────────────────┘  │
│                            │                                     │
│              ┌─────────────┴─────────────┐                      │
│              ▼                           ▼                      │
│   ┌──────────────────┐        ┌──────────────────┐             │
│   │ FetchCoordinator │───────►│  ResourceCache   │             │
│   │ (dedupe/throttle)│        │ (last good value)│             │
│   └──────────────────┘        └──────────────────┘             │
│              │ reads / reports                                   │
│              ▼                                                   │
│   ┌──────────────────┐        ┌──────────────────┐             │
│   │ConnectionMonitor │◄───────│   HostSignals    │             │
│   │ (probe/backoff)  │        │(online/visibility)│            │
│   └──────────────────┘        └──────────────────┘             │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from sync_core.sync import SyncContext, HostSignals

context = SyncContext(config, probe_fn=gateway.probe)
context.init(HostSignals())
handle = context.subscribe("dashboard:stats", fetch_stats, ttl=config.dashboard_ttl)
await handle.settled()
print(handle.data, handle.error, handle.is_stale)
"""

from sync_core.sync.subscription import Subscription, SubscriptionList

from sync_core.sync.host_signals import HostEvent, HostSignals

from sync_core.sync.resource_cache import CacheEntry, ResourceCache

from sync_core.sync.fetch_coordinator import (
    CancelToken,
    FetchCoordinator,
    FetchGuard,
    FetchOutcome,
    FetchStatus,
)

from sync_core.sync.connection_monitor import (
    ConnectionEvent,
    ConnectionMonitor,
    ConnectionState,
    ConnectionStatus,
)

from sync_core.sync.synced_resource import (
    ResourceHandle,
    ResourceSnapshot,
    SyncedResource,
)

from sync_core.sync.context import SyncContext

__all__ = [
    # Subscriptions
    "Subscription",
    "SubscriptionList",
    # Host signals
    "HostEvent",
    "HostSignals",
    # Cache
    "CacheEntry",
    "ResourceCache",
    # Fetch coordination
    "CancelToken",
    "FetchCoordinator",
    "FetchGuard",
    "FetchOutcome",
    "FetchStatus",
    # Connection monitoring
    "ConnectionEvent",
    "ConnectionMonitor",
    "ConnectionState",
    "ConnectionStatus",
    # Resources
    "ResourceHandle",
    "ResourceSnapshot",
    "SyncedResource",
    # Context (main API)
    "SyncContext",
]
