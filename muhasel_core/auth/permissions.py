"""
Role checks applied by the offline entity handlers.

The rules mirror what the remote server enforces, so a request gets the
same answer online and offline.
"""

from typing import Any, Dict, Iterable, List, Optional

ROLE_ADMIN = "admin"
ROLE_SCHOOL_ADMIN = "schoolAdmin"

# Fields never returned to callers
SENSITIVE_FIELDS = ("password",)


def get_user_role(user: Optional[Dict[str, Any]]) -> Optional[str]:
    if not user:
        return None
    return user.get("role")


def check_admin_access(user: Optional[Dict[str, Any]]) -> bool:
    """True if the user is a platform administrator."""
    return get_user_role(user) == ROLE_ADMIN


def check_school_admin_access(user: Optional[Dict[str, Any]], school_id: Optional[str] = None) -> bool:
    """True if the user administers a school (the given one, when passed)."""
    if get_user_role(user) != ROLE_SCHOOL_ADMIN:
        return False
    return school_id is None or user.get("schoolId") == school_id


def strip_sensitive(record: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of a record without password fields."""
    if record is None:
        return None
    return {k: v for k, v in record.items() if k not in SENSITIVE_FIELDS}


def strip_sensitive_many(records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [strip_sensitive(r) for r in records]
