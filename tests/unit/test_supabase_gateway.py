# =============================================================================
# tests/unit/test_supabase_gateway.py
# Unit Tests for SupabaseGateway
# =============================================================================

from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from sync_core.config import SupabaseSettings
from sync_core.data import SupabaseGateway, create_supabase_client
from sync_core.errors import ConfigurationError, ErrorKind, FetchCancelledError, SyncError
from sync_core.sync import CancelToken


def no_rows():
    return APIError({"message": "JSON object requested, multiple (or no) rows returned",
                     "code": "PGRST116", "hint": None, "details": None})


@pytest.fixture
def gateway(mock_supabase):
    return SupabaseGateway(mock_supabase, probe_table="clients")


class TestSupabaseGatewayQuery:
    """Query execution off the event loop"""

    @pytest.mark.asyncio
    async def test_returns_response_data(self, gateway, mock_supabase):
        mock_supabase.table.return_value.select.return_value.execute.return_value.data = [{"id": 1}]

        rows = await gateway.query(lambda client: client.table("clients").select("*"))

        assert rows == [{"id": 1}]
        mock_supabase.table.assert_called_with("clients")

    @pytest.mark.asyncio
    async def test_errors_are_classified(self, gateway, mock_supabase):
        mock_supabase.table.return_value.select.return_value.execute.side_effect = ConnectionError("refused")

        with pytest.raises(SyncError) as exc_info:
            await gateway.query(lambda client: client.table("clients").select("*"))

        assert exc_info.value.kind is ErrorKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_cancelled_token_drops_response(self, gateway):
        token = CancelToken("clients:list", 1)
        token.cancel()

        with pytest.raises(FetchCancelledError):
            await gateway.query(lambda client: client.table("clients").select("*"), token)

    @pytest.mark.asyncio
    async def test_query_one_treats_no_rows_as_none(self, gateway, mock_supabase):
        builder = mock_supabase.table.return_value.select.return_value.eq.return_value.single.return_value
        builder.execute.side_effect = no_rows()

        row = await gateway.query_one(
            lambda client: client.table("clients").select("id").eq("user_id", "u").single()
        )
        assert row is None

    @pytest.mark.asyncio
    async def test_rpc(self, gateway, mock_supabase):
        mock_supabase.rpc.return_value.execute.return_value.data = {"compliance_percentage": 75}

        report = await gateway.rpc("generate_compliance_report", {"p_client_id": 7})

        assert report == {"compliance_percentage": 75}
        mock_supabase.rpc.assert_called_once_with("generate_compliance_report", {"p_client_id": 7})


class TestSupabaseGatewayProbe:
    """Reachability read"""

    @pytest.mark.asyncio
    async def test_empty_table_is_reachable(self, gateway, mock_supabase):
        builder = mock_supabase.table.return_value.select.return_value.limit.return_value.single.return_value
        builder.execute.side_effect = no_rows()

        assert await gateway.probe()

    @pytest.mark.asyncio
    async def test_jwt_rejection_is_unauthenticated(self, gateway, mock_supabase):
        builder = mock_supabase.table.return_value.select.return_value.limit.return_value.single.return_value
        builder.execute.side_effect = APIError({"message": "JWT expired", "code": "PGRST301",
                                                "hint": None, "details": None})

        with pytest.raises(SyncError) as exc_info:
            await gateway.probe()
        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_refresh_session(self, gateway, mock_supabase):
        await gateway.refresh_session()
        mock_supabase.auth.refresh_session.assert_called_once()


class TestCreateSupabaseClient:
    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError):
            create_supabase_client(SupabaseSettings())
