# =============================================================================
# sync_core/data/supabase_client.py
# Supabase Client Configuration and Async Gateway
# Runs postgrest queries off the event loop and classifies their failures
# =============================================================================

from __future__ import annotations
import asyncio
from typing import Any, Callable, Dict, Optional
import logging

from postgrest.exceptions import APIError
from supabase import Client, create_client

from sync_core.config import SupabaseSettings
from sync_core.errors import ConfigurationError, SyncError, classify_error
from sync_core.sync.fetch_coordinator import CancelToken

logger = logging.getLogger(__name__)

# PostgREST: ".single()" matched no rows. The backend answered, so it is reachable.
NO_ROWS_CODE = "PGRST116"

QueryBuilder = Callable[[Client], Any]


def create_supabase_client(settings: SupabaseSettings) -> Client:
    """
    Initialize and return a Supabase client.

    Raises:
        ConfigurationError: if url/key are missing
    """
    if not settings.is_configured:
        raise ConfigurationError(
            "Supabase credentials not found. Set SUPABASE_URL / SUPABASE_KEY or "
            "add a [supabase] table to .streamlit/secrets.toml",
            config_key="supabase",
        )
    return create_client(settings.url, settings.key)


class SupabaseGateway:
    """
    Async facade over the (blocking) supabase-py client.

    Every call runs ``builder.execute()`` in a worker thread. Cancellation is
    cooperative: a cancelled token makes the gateway drop the response.

    Usage:
        gateway = SupabaseGateway(create_supabase_client(settings))
        rows = await gateway.query(lambda c: c.table("clients").select("*"), token)
    """

    def __init__(self, client: Client, probe_table: str = "clients"):
        self.client = client
        self.probe_table = probe_table

    @classmethod
    def from_settings(cls, settings: SupabaseSettings, probe_table: str = "clients") -> SupabaseGateway:
        return cls(create_supabase_client(settings), probe_table=probe_table)

    async def _execute(self, builder: Any, token: Optional[CancelToken] = None) -> Any:
        if token is not None:
            token.raise_if_cancelled()
        response = await asyncio.to_thread(builder.execute)
        if token is not None:
            token.raise_if_cancelled()
        return response

    async def query(self, build: QueryBuilder, token: Optional[CancelToken] = None) -> Any:
        """
        Build a query against the client and run it.

        Args:
            build: Function receiving the client and returning a request builder
            token: Cancellation token of the current fetch

        Returns:
            ``response.data`` (a list of rows, or a dict for single-row queries)

        Raises:
            SyncError subclasses
        """
        try:
            response = await self._execute(build(self.client), token)
        except SyncError:
            raise
        except Exception as e:
            raise classify_error(e) from e
        return response.data

    async def query_one(self, build: QueryBuilder, token: Optional[CancelToken] = None) -> Optional[Dict[str, Any]]:
        """Like query() for ``.single()`` requests; "no rows" yields None."""
        try:
            response = await self._execute(build(self.client), token)
        except SyncError:
            raise
        except APIError as e:
            if e.code == NO_ROWS_CODE:
                return None
            raise classify_error(e) from e
        except Exception as e:
            raise classify_error(e) from e
        return response.data

    async def rpc(self, name: str, params: Optional[Dict[str, Any]] = None, token: Optional[CancelToken] = None) -> Any:
        return await self.query(lambda client: client.rpc(name, params or {}), token)

    async def probe(self) -> bool:
        """Cheapest always-authorized read; raises SyncError when unreachable."""
        await self.query_one(lambda client: client.table(self.probe_table).select("id").limit(1).single())
        return True

    async def refresh_session(self) -> None:
        """Ask the auth client for a fresh access token."""
        try:
            await asyncio.to_thread(self.client.auth.refresh_session)
        except Exception as e:
            raise classify_error(e) from e
