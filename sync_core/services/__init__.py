# =============================================================================
# sync_core/services/__init__.py
# =============================================================================

from .base_service import BaseService, ServiceResult

__all__ = ["BaseService", "ServiceResult"]
