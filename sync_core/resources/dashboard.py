# =============================================================================
# sync_core/resources/dashboard.py
# Admin Dashboard Statistics and Recent Activity
# =============================================================================

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import pandas as pd

from sync_core.services import BaseService
from sync_core.sync import CancelToken, ResourceHandle, ResourceSnapshot, SyncContext
from sync_core.data import SupabaseGateway

DASHBOARD_STATS_KEY = "dashboard:stats"

EXPIRING_WINDOW_DAYS = 30
RECENT_PER_SOURCE = 3
RECENT_ACTIVITY_LIMIT = 5

CLIENT_STATS_COLUMNS = ["id", "name", "status", "created_at"]
DOCUMENT_STATS_COLUMNS = ["id", "name", "status", "valid_until", "created_at"]


@dataclass
class DashboardStats:
    total_clients: int = 0
    active_clients: int = 0
    total_documents: int = 0
    approved_documents: int = 0
    pending_documents: int = 0
    expired_documents: int = 0
    documents_expiring_soon: int = 0
    recent_activity: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _utc(value: Union[str, datetime, None] = None) -> pd.Timestamp:
    stamp = pd.Timestamp(datetime.now(timezone.utc) if value is None else value)
    if pd.isna(stamp):
        return stamp
    return stamp.tz_localize("UTC") if stamp.tzinfo is None else stamp.tz_convert("UTC")


def format_relative_time(value: Union[str, datetime, None], now: Optional[datetime] = None) -> str:
    """
    Human label for a timestamp: "Just now", "5 minutes ago", "2 days ago",
    or the calendar date once it is a week old.
    """
    if value is None or value == "":
        return "Unknown date"
    try:
        moment = _utc(value)
    except (ValueError, TypeError):
        return "Invalid date"
    if pd.isna(moment):
        return "Invalid date"

    minutes = int((_utc(now) - moment).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    if days < 7:
        return f"{days} day{'s' if days != 1 else ''} ago"
    return moment.strftime("%Y-%m-%d")


def _frame(rows: Optional[List[Dict[str, Any]]], columns: List[str]) -> pd.DataFrame:
    df = pd.DataFrame(rows or [])
    for column in columns:
        if column not in df.columns:
            df[column] = None
    return df


def _recent_activity(clients: pd.DataFrame, documents: pd.DataFrame, now: pd.Timestamp) -> List[Dict[str, Any]]:
    items = []
    for _, row in clients.head(RECENT_PER_SOURCE).iterrows():
        items.append({
            "id": f"client-{row['id']}",
            "type": "client",
            "message": f"New client registered: {row['name']}",
            "created_at": row["created_at"],
            "icon": "users",
            "color": "blue",
        })
    for _, row in documents.head(RECENT_PER_SOURCE).iterrows():
        approved = row["status"] == "approved"
        items.append({
            "id": f"document-{row['id']}",
            "type": "document",
            "message": f"Document {'approved' if approved else 'uploaded'}: {row['name']}",
            "created_at": row["created_at"],
            "icon": "check-circle" if approved else "file-text",
            "color": "green" if approved else "orange",
        })

    if not items:
        return []

    activity = pd.DataFrame(items)
    activity["_sort"] = pd.to_datetime(activity["created_at"], utc=True, errors="coerce")
    activity = activity.sort_values("_sort", ascending=False, na_position="last").head(RECENT_ACTIVITY_LIMIT)
    activity["time"] = [format_relative_time(value, now.to_pydatetime()) for value in activity["created_at"]]
    activity = activity.drop(columns="_sort").astype(object)
    activity = activity.where(activity.notna(), None)
    return activity.to_dict(orient="records")


def compute_dashboard_stats(
    clients: Optional[List[Dict[str, Any]]],
    documents: Optional[List[Dict[str, Any]]],
    now: Optional[datetime] = None,
) -> DashboardStats:
    """Aggregate counts over raw client and document rows."""
    current = _utc(now)
    clients_df = _frame(clients, CLIENT_STATS_COLUMNS)
    documents_df = _frame(documents, DOCUMENT_STATS_COLUMNS)

    for df in (clients_df, documents_df):
        df["_created"] = pd.to_datetime(df["created_at"], utc=True, errors="coerce")
        df.sort_values("_created", ascending=False, na_position="last", inplace=True)

    valid_until = pd.to_datetime(documents_df["valid_until"], utc=True, errors="coerce")
    window_end = current + timedelta(days=EXPIRING_WINDOW_DAYS)

    return DashboardStats(
        total_clients=len(clients_df),
        active_clients=int((clients_df["status"] == "active").sum()),
        total_documents=len(documents_df),
        approved_documents=int((documents_df["status"] == "approved").sum()),
        pending_documents=int((documents_df["status"] == "pending").sum()),
        expired_documents=int((valid_until < current).sum()),
        documents_expiring_soon=int(((valid_until > current) & (valid_until <= window_end)).sum()),
        recent_activity=_recent_activity(
            clients_df.drop(columns="_created"),
            documents_df.drop(columns="_created"),
            current,
        ),
    )


class DashboardResource(BaseService):
    """
    Dashboard statistics shared by every admin screen under one cache key.

    Usage:
        dashboard = DashboardResource(context, gateway)
        handle = dashboard.subscribe()
        await handle.settled()
        stats = handle.data
    """

    def __init__(self, context: SyncContext, gateway: SupabaseGateway):
        super().__init__()
        self.context = context
        self.gateway = gateway

    async def fetch_stats(self, token: CancelToken) -> DashboardStats:
        clients = await self.gateway.query(
            lambda client: client.table("clients")
            .select(", ".join(CLIENT_STATS_COLUMNS))
            .order("created_at", desc=True),
            token,
        )
        documents = await self.gateway.query(
            lambda client: client.table("documents")
            .select(", ".join(DOCUMENT_STATS_COLUMNS))
            .order("created_at", desc=True),
            token,
        )
        stats = compute_dashboard_stats(clients, documents)
        self.logger.info(
            f"Dashboard stats: {stats.total_clients} clients, {stats.total_documents} documents"
        )
        return stats

    def subscribe(self, on_change: Optional[Callable[[ResourceSnapshot], None]] = None) -> ResourceHandle:
        return self.context.subscribe(
            DASHBOARD_STATS_KEY,
            self.fetch_stats,
            ttl=self.context.config.dashboard_ttl,
            on_change=on_change,
        )
