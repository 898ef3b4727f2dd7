# =============================================================================
# muhasel_core/services/__init__.py
# Service Layer for Muhasel
# =============================================================================
"""
Service Layer for Muhasel

Every public operation of the offline core answers with a ServiceResult,
the Python form of the ``{success, data, message}`` envelope.

Usage Example:
-------------
    from muhasel_core.offline import get_runtime

    api = get_runtime().router
    result = api.request("/users", "GET")
    if result.success:
        users = result.data
    else:
        print(result.message)
"""

from .base_service import BaseService, ServiceResult

__all__ = [
    "BaseService",
    "ServiceResult",
]
