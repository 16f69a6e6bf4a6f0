# =============================================================================
# sync_core/resources/__init__.py
# Backend Resources Built on the Sync Layer
# =============================================================================

from .dashboard import (
    DASHBOARD_STATS_KEY,
    DashboardResource,
    DashboardStats,
    compute_dashboard_stats,
    format_relative_time,
)

from .clients import (
    CLIENTS_PREFIX,
    ClientFilters,
    ClientsResource,
)

from .client_portal import (
    ClientPortal,
    ClientStats,
    Notifications,
    compute_client_stats,
)

__all__ = [
    # Dashboard
    "DASHBOARD_STATS_KEY",
    "DashboardResource",
    "DashboardStats",
    "compute_dashboard_stats",
    "format_relative_time",
    # Clients
    "CLIENTS_PREFIX",
    "ClientFilters",
    "ClientsResource",
    # Client portal
    "ClientPortal",
    "ClientStats",
    "Notifications",
    "compute_client_stats",
]
