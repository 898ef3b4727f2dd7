"""
Authentication helpers for the offline core.

Password hashing, offline token handling and the role checks used by the
offline entity handlers. Login itself lives in the hybrid API router.
"""

from .passwords import hash_password, verify_password, is_password_hash
from .tokens import make_offline_token, is_offline_token, extract_user_id
from .permissions import (
    ROLE_ADMIN,
    ROLE_SCHOOL_ADMIN,
    get_user_role,
    check_admin_access,
    check_school_admin_access,
    strip_sensitive,
    strip_sensitive_many,
)

__all__ = [
    "hash_password",
    "verify_password",
    "is_password_hash",
    "make_offline_token",
    "is_offline_token",
    "extract_user_id",
    "ROLE_ADMIN",
    "ROLE_SCHOOL_ADMIN",
    "get_user_role",
    "check_admin_access",
    "check_school_admin_access",
    "strip_sensitive",
    "strip_sensitive_many",
]
