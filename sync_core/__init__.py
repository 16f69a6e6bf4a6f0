# =============================================================================
# sync_core/__init__.py
# Resilient Data Synchronization for Supabase-Backed Applications
# =============================================================================
"""
sync_core keeps screens supplied with the last good data while the backend
comes and goes.

    SyncContext         owns everything below; init() / dispose()
    ConnectionMonitor   probes, reconnect backoff, online/offline/visibility
    FetchCoordinator    dedup, throttle, cancellation, timeout
    ResourceCache       last-known-good value per key, TTL freshness
    SyncedResource      {data, loading, refreshing, error, is_stale}

Quick start:
    from sync_core import SyncContext, load_config
    from sync_core.data import SupabaseGateway

    config, settings = load_config()
    gateway = SupabaseGateway.from_settings(settings, probe_table=config.probe_table)
    context = SyncContext(config, probe_fn=gateway.probe,
                          refresh_session=gateway.refresh_session)
    context.init()
"""

from sync_core.config import SupabaseSettings, SyncConfig, load_config
from sync_core.sync import (
    ConnectionEvent,
    ConnectionMonitor,
    ConnectionStatus,
    FetchCoordinator,
    FetchStatus,
    HostEvent,
    HostSignals,
    ResourceCache,
    ResourceHandle,
    ResourceSnapshot,
    SyncContext,
    SyncedResource,
)

__version__ = "1.0.0"

__all__ = [
    "SupabaseSettings",
    "SyncConfig",
    "load_config",
    "ConnectionEvent",
    "ConnectionMonitor",
    "ConnectionStatus",
    "FetchCoordinator",
    "FetchStatus",
    "HostEvent",
    "HostSignals",
    "ResourceCache",
    "ResourceHandle",
    "ResourceSnapshot",
    "SyncContext",
    "SyncedResource",
]
