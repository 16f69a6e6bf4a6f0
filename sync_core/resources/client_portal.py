# =============================================================================
# sync_core/resources/client_portal.py
# Per-User Client Portal: Stats, Documents, Establishments, Notifications
# =============================================================================
"""
Resources scoped to the signed-in user's client record.

Every key is prefixed with ``portal:<user_id>:`` so a mutation can invalidate
exactly one user's view. A user without a client record gets empty values
rather than errors.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from sync_core.errors import ErrorKind, SyncError
from sync_core.services import BaseService, ServiceResult
from sync_core.sync import CancelToken, ResourceHandle, ResourceSnapshot, SyncContext
from sync_core.data import SupabaseGateway
from .clients import CLIENTS_PREFIX
from .dashboard import DASHBOARD_STATS_KEY, EXPIRING_WINDOW_DAYS

DOCUMENTS_LIMIT = 10
NOTIFICATIONS_LIMIT = 50

# Used only when the compliance report function is unavailable
REQUIRED_DOCUMENTS_ESTIMATE = 5

COMPLIANCE_REPORT_FN = "generate_compliance_report"


@dataclass
class ClientStats:
    active_documents: int = 0
    approved_documents: int = 0
    expiring_documents: int = 0
    total_establishments: int = 0
    compliance_percentage: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Notifications:
    items: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self.items if not item.get("read"))


def compute_client_stats(
    documents: Optional[List[Dict[str, Any]]],
    establishments_count: int,
    compliance_percentage: Optional[float] = None,
    now: Optional[datetime] = None,
) -> ClientStats:
    """
    Counts over one client's documents.

    Without a compliance report the percentage is estimated from approved
    documents against REQUIRED_DOCUMENTS_ESTIMATE, capped at 100.
    """
    df = pd.DataFrame(documents or [])
    for column in ("status", "valid_until"):
        if column not in df.columns:
            df[column] = None

    current = pd.Timestamp(now or datetime.now(timezone.utc))
    if current.tzinfo is None:
        current = current.tz_localize("UTC")
    valid_until = pd.to_datetime(df["valid_until"], utc=True, errors="coerce")
    approved = df["status"] == "approved"

    expiring = approved & (valid_until > current) & (valid_until <= current + timedelta(days=EXPIRING_WINDOW_DAYS))

    if compliance_percentage is None:
        compliance_percentage = min(100.0, int(approved.sum()) / REQUIRED_DOCUMENTS_ESTIMATE * 100)

    return ClientStats(
        active_documents=int(df["status"].isin(["pending", "approved"]).sum()),
        approved_documents=int(approved.sum()),
        expiring_documents=int(expiring.sum()),
        total_establishments=establishments_count,
        compliance_percentage=int(round(compliance_percentage)),
    )


class ClientPortal(BaseService):
    """
    Usage:
        portal = ClientPortal(context, gateway, user_id)
        stats = portal.subscribe_stats()
        notifications = portal.subscribe_notifications()
        await portal.mark_as_read(notification_id)
    """

    def __init__(self, context: SyncContext, gateway: SupabaseGateway, user_id: str):
        super().__init__()
        self.context = context
        self.gateway = gateway
        self.user_id = user_id
        self.prefix = f"portal:{user_id}:"

    # =========================================================================
    # KEYS
    # =========================================================================

    @property
    def stats_key(self) -> str:
        return f"{self.prefix}stats"

    def documents_key(self, limit: int = DOCUMENTS_LIMIT) -> str:
        return f"{self.prefix}documents?limit={limit}"

    @property
    def establishments_key(self) -> str:
        return f"{self.prefix}establishments"

    @property
    def notifications_key(self) -> str:
        return f"{self.prefix}notifications"

    @property
    def profile_key(self) -> str:
        return f"{self.prefix}profile"

    # =========================================================================
    # FETCHERS
    # =========================================================================

    async def client_id(self, token: Optional[CancelToken] = None) -> Optional[Any]:
        """The id of the client row owned by this user, or None."""
        row = await self.gateway.query_one(
            lambda client: client.table("clients").select("id").eq("user_id", self.user_id).single(),
            token,
        )
        return row["id"] if row else None

    async def _compliance(self, client_id: Any, token: CancelToken) -> Optional[float]:
        try:
            report = await self.gateway.rpc(COMPLIANCE_REPORT_FN, {"p_client_id": client_id}, token)
        except SyncError as e:
            if e.kind in (ErrorKind.UNAUTHENTICATED, ErrorKind.CANCELLED, ErrorKind.TIMEOUT):
                raise
            self.logger.warning(f"Compliance report unavailable, estimating: {e.message}")
            return None

        if isinstance(report, list):
            report = report[0] if report else None
        if isinstance(report, dict) and report.get("compliance_percentage") is not None:
            return float(report["compliance_percentage"])
        return None

    async def fetch_stats(self, token: CancelToken) -> ClientStats:
        client_id = await self.client_id(token)
        if client_id is None:
            self.logger.info(f"No client record for user {self.user_id}")
            return ClientStats()

        documents = await self.gateway.query(
            lambda client: client.table("documents").select("id, status, valid_until").eq("client_id", client_id),
            token,
        )
        establishments = await self.gateway.query(
            lambda client: client.table("establishments").select("id").eq("client_id", client_id),
            token,
        )
        compliance = await self._compliance(client_id, token)
        return compute_client_stats(documents, len(establishments or []), compliance)

    def documents_fetcher(self, limit: int = DOCUMENTS_LIMIT) -> Callable[[CancelToken], Any]:
        async def fetch_documents(token: CancelToken) -> List[Dict[str, Any]]:
            client_id = await self.client_id(token)
            if client_id is None:
                return []
            rows = await self.gateway.query(
                lambda client: client.table("documents")
                .select("*, document_types (name, description, required_fields)")
                .eq("client_id", client_id)
                .order("updated_at", desc=True)
                .limit(limit),
                token,
            )
            return rows or []

        return fetch_documents

    async def fetch_establishments(self, token: CancelToken) -> List[Dict[str, Any]]:
        client_id = await self.client_id(token)
        if client_id is None:
            return []
        rows = await self.gateway.query(
            lambda client: client.table("establishments")
            .select("*")
            .eq("client_id", client_id)
            .order("created_at", desc=True),
            token,
        )
        return rows or []

    async def fetch_notifications(self, token: CancelToken) -> Notifications:
        client_id = await self.client_id(token)
        if client_id is None:
            return Notifications()
        rows = await self.gateway.query(
            lambda client: client.table("notifications")
            .select("*, documents (name, document_types (name))")
            .eq("client_id", client_id)
            .order("created_at", desc=True)
            .limit(NOTIFICATIONS_LIMIT),
            token,
        )
        return Notifications(items=rows or [])

    async def fetch_profile(self, token: CancelToken) -> Optional[Dict[str, Any]]:
        return await self.gateway.query_one(
            lambda client: client.table("clients").select("*").eq("user_id", self.user_id).single(),
            token,
        )

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def _subscribe(self, key: str, fetch_fn, ttl: float, on_change) -> ResourceHandle:
        return self.context.subscribe(key, fetch_fn, ttl=ttl, on_change=on_change)

    def subscribe_stats(self, on_change: Optional[Callable[[ResourceSnapshot], None]] = None) -> ResourceHandle:
        return self._subscribe(self.stats_key, self.fetch_stats, self.context.config.dashboard_ttl, on_change)

    def subscribe_documents(
        self,
        limit: int = DOCUMENTS_LIMIT,
        on_change: Optional[Callable[[ResourceSnapshot], None]] = None,
    ) -> ResourceHandle:
        return self._subscribe(self.documents_key(limit), self.documents_fetcher(limit), self.context.config.list_ttl, on_change)

    def subscribe_establishments(self, on_change: Optional[Callable[[ResourceSnapshot], None]] = None) -> ResourceHandle:
        return self._subscribe(self.establishments_key, self.fetch_establishments, self.context.config.list_ttl, on_change)

    def subscribe_notifications(self, on_change: Optional[Callable[[ResourceSnapshot], None]] = None) -> ResourceHandle:
        return self._subscribe(self.notifications_key, self.fetch_notifications, self.context.config.list_ttl, on_change)

    def subscribe_profile(self, on_change: Optional[Callable[[ResourceSnapshot], None]] = None) -> ResourceHandle:
        return self._subscribe(self.profile_key, self.fetch_profile, self.context.config.list_ttl, on_change)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def _patch_notifications(self, mark: Callable[[Dict[str, Any]], bool], read_at: str) -> None:
        """Apply a read mark to the cached list so consumers update immediately."""
        entry = self.context.cache.get(self.notifications_key)
        if entry is None or not isinstance(entry.value, Notifications):
            return
        items = [
            {**item, "read": True, "read_at": read_at} if mark(item) else item
            for item in entry.value.items
        ]
        self.context.set(self.notifications_key, replace(entry.value, items=items))

    async def mark_as_read(self, notification_id: Any) -> ServiceResult:
        read_at = datetime.now(timezone.utc).isoformat()

        async def _mark() -> Any:
            await self.gateway.query(
                lambda client: client.table("notifications")
                .update({"read": True, "read_at": read_at})
                .eq("id", notification_id)
            )
            return notification_id

        result = await self.safe_execute(f"Marking notification {notification_id} as read", _mark)
        if result.success:
            self._patch_notifications(lambda item: item.get("id") == notification_id, read_at)
        return result

    async def mark_all_as_read(self) -> ServiceResult:
        read_at = datetime.now(timezone.utc).isoformat()

        async def _mark_all() -> Any:
            client_id = await self.client_id()
            if client_id is None:
                return 0
            rows = await self.gateway.query(
                lambda client: client.table("notifications")
                .update({"read": True, "read_at": read_at})
                .eq("client_id", client_id)
                .eq("read", False)
            )
            return len(rows or [])

        result = await self.safe_execute("Marking all notifications as read", _mark_all)
        if result.success:
            self._patch_notifications(lambda item: not item.get("read"), read_at)
        return result

    async def update_profile(self, updates: Dict[str, Any]) -> ServiceResult:
        async def _update() -> Optional[Dict[str, Any]]:
            payload = {**updates, "updated_at": datetime.now(timezone.utc).isoformat()}
            rows = await self.gateway.query(
                lambda client: client.table("clients").update(payload).eq("user_id", self.user_id)
            )
            return rows[0] if rows else None

        result = await self.safe_execute(f"Updating profile for user {self.user_id}", _update)
        if result.success:
            if result.data is not None:
                self.context.set(self.profile_key, result.data)
            self.context.invalidate_prefix(CLIENTS_PREFIX)
            self.context.invalidate(DASHBOARD_STATS_KEY)
        return result
