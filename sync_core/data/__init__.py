# =============================================================================
# sync_core/data/__init__.py
# =============================================================================

from .supabase_client import SupabaseGateway, create_supabase_client

__all__ = ["SupabaseGateway", "create_supabase_client"]
