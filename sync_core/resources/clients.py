# =============================================================================
# sync_core/resources/clients.py
# Admin Client List with CRUD and Cache Invalidation
# =============================================================================

from __future__ import annotations
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sync_core.services import BaseService, ServiceResult
from sync_core.sync import CancelToken, ResourceHandle, ResourceSnapshot, SyncContext
from sync_core.data import SupabaseGateway
from .dashboard import DASHBOARD_STATS_KEY

CLIENTS_TABLE = "clients"
CLIENTS_PREFIX = "clients:"

CLIENT_COLUMNS = ", ".join([
    "id",
    "name",
    "commercial_name",
    "rfc",
    "email",
    "phone",
    "physical_address",
    "municipality",
    "business_type",
    "business_subtype",
    "risk_level",
    "status",
    "client_code",
    "created_at",
    "updated_at",
])

RISK_LEVELS = ["bajo", "medio", "alto"]
STATUS_OPTIONS = ["active", "inactive", "suspended"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ClientFilters:
    """List filters; every distinct combination is its own cache key."""
    municipality: str = ""
    status: str = ""
    risk_level: str = ""
    search: str = ""

    def cache_key(self) -> str:
        parts = [f"{name}={value}" for name, value in sorted(asdict(self).items()) if value]
        return f"{CLIENTS_PREFIX}list" + (f"?{'&'.join(parts)}" if parts else "")

    def merged(self, **changes: str) -> ClientFilters:
        return replace(self, **changes)

    def apply(self, query: Any) -> Any:
        """Add eq/ilike clauses to a postgrest select builder."""
        if self.municipality:
            query = query.eq("municipality", self.municipality)
        if self.status:
            query = query.eq("status", self.status)
        if self.risk_level:
            query = query.eq("risk_level", self.risk_level)
        if self.search:
            term = self.search.replace(",", " ").strip()
            query = query.or_(
                f"name.ilike.%{term}%,commercial_name.ilike.%{term}%,rfc.ilike.%{term}%"
            )
        return query


class ClientsResource(BaseService):
    """
    Client list for the admin screens.

    Usage:
        clients = ClientsResource(context, gateway)
        handle = clients.subscribe(ClientFilters(status="active"))
        await handle.settled()
        result = await clients.create_client({"name": "Acme"})
    """

    def __init__(self, context: SyncContext, gateway: SupabaseGateway):
        super().__init__()
        self.context = context
        self.gateway = gateway

    def fetcher(self, filters: ClientFilters) -> Callable[[CancelToken], Any]:
        async def fetch_clients(token: CancelToken) -> List[Dict[str, Any]]:
            self.logger.info(f"Loading clients with filters: {filters}")
            rows = await self.gateway.query(
                lambda client: filters.apply(
                    client.table(CLIENTS_TABLE)
                    .select(CLIENT_COLUMNS)
                    .order("created_at", desc=True)
                ),
                token,
            )
            rows = rows or []
            self.logger.info(f"Clients loaded: {len(rows)}")
            return rows

        return fetch_clients

    def subscribe(
        self,
        filters: Optional[ClientFilters] = None,
        on_change: Optional[Callable[[ResourceSnapshot], None]] = None,
    ) -> ResourceHandle:
        filters = filters or ClientFilters()
        return self.context.subscribe(
            filters.cache_key(),
            self.fetcher(filters),
            ttl=self.context.config.list_ttl,
            on_change=on_change,
        )

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def _invalidate(self) -> None:
        """A client mutation changes every filtered list and the dashboard."""
        self.context.invalidate_prefix(CLIENTS_PREFIX)
        self.context.invalidate(DASHBOARD_STATS_KEY)

    async def create_client(self, client_data: Dict[str, Any]) -> ServiceResult:
        async def _create() -> Dict[str, Any]:
            payload = {**client_data, "created_at": _now_iso()}
            rows = await self.gateway.query(lambda client: client.table(CLIENTS_TABLE).insert([payload]))
            return rows[0] if rows else payload

        result = await self.safe_execute(f"Creating client {client_data.get('name', '')!r}", _create)
        if result.success:
            self._invalidate()
        return result

    async def update_client(self, client_id: Any, client_data: Dict[str, Any]) -> ServiceResult:
        async def _update() -> Optional[Dict[str, Any]]:
            payload = {**client_data, "updated_at": _now_iso()}
            rows = await self.gateway.query(
                lambda client: client.table(CLIENTS_TABLE).update(payload).eq("id", client_id)
            )
            return rows[0] if rows else None

        result = await self.safe_execute(f"Updating client {client_id}", _update)
        if result.success:
            self._invalidate()
        return result

    async def delete_client(self, client_id: Any) -> ServiceResult:
        async def _delete() -> Any:
            await self.gateway.query(lambda client: client.table(CLIENTS_TABLE).delete().eq("id", client_id))
            return client_id

        result = await self.safe_execute(f"Deleting client {client_id}", _delete)
        if result.success:
            self._invalidate()
        return result
