# =============================================================================
# muhasel_core/offline/handlers.py
# Offline entity handlers used when the remote backend is unreachable
# =============================================================================
"""
Offline handlers answer requests from the local store.

Each handler enforces the authorization rules the server would apply, so
a caller gets the same answer online and offline:
- non-admin callers only see their own school's data
- creating, updating and deleting privileged entities needs the right role
- password hashes never leave the handler, plain passwords never reach the store
"""

from __future__ import annotations
from abc import ABC
from typing import Any, Dict, Optional

from muhasel_core.auth import (
    check_admin_access,
    check_school_admin_access,
    hash_password,
    strip_sensitive,
    strip_sensitive_many,
)
from muhasel_core.errors import (
    NotAuthenticatedError,
    NotAuthorizedError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from muhasel_core.offline.api_request import ApiRequest, Operation
from muhasel_core.offline.local_database import LocalDatabase
from muhasel_core.offline.session import AuthSession
from muhasel_core.services.base_service import ServiceResult


class EntityHandler(ABC):
    """
    Base class for offline handlers, one per entity tag.

    Subclasses override the operations they support; the rest answer with
    UnavailableError.
    """

    entity: str = ""

    def __init__(self, store: LocalDatabase, session: AuthSession, bcrypt_rounds: int = 10):
        self.store = store
        self.session = session
        self.bcrypt_rounds = bcrypt_rounds

    @property
    def current_user(self) -> Optional[Dict[str, Any]]:
        return self.session.user

    @property
    def is_admin(self) -> bool:
        return check_admin_access(self.current_user)

    def handle(self, request: ApiRequest) -> ServiceResult:
        """Run a request against the local store."""
        operation = request.operation
        if operation == Operation.LIST:
            return self.list(dict(request.data or {}))
        if operation == Operation.CREATE:
            return self.create(dict(request.data or {}))

        if not request.entity_id:
            raise ValidationError(f"{self.entity} id is required", field="id")
        if operation == Operation.GET:
            return self.get(request.entity_id)
        if operation == Operation.UPDATE:
            return self.update(request.entity_id, dict(request.data or {}))
        return self.delete(request.entity_id)

    def list(self, filters: Dict[str, Any]) -> ServiceResult:
        raise UnavailableError(f"Listing {self.entity} is not available offline")

    def get(self, entity_id: str) -> ServiceResult:
        raise UnavailableError(f"Reading {self.entity} is not available offline")

    def create(self, data: Dict[str, Any]) -> ServiceResult:
        raise UnavailableError(f"Creating {self.entity} is not available offline")

    def update(self, entity_id: str, data: Dict[str, Any]) -> ServiceResult:
        raise UnavailableError(f"Updating {self.entity} is not available offline")

    def delete(self, entity_id: str) -> ServiceResult:
        raise UnavailableError(f"Deleting {self.entity} is not available offline")

    def _require_user(self) -> Dict[str, Any]:
        if self.current_user is None:
            raise NotAuthenticatedError("Authentication required")
        return self.current_user

    def _hash_password(self, data: Dict[str, Any]) -> None:
        if data.get("password"):
            data["password"] = hash_password(data["password"], rounds=self.bcrypt_rounds)


class UserHandler(EntityHandler):
    """Offline user operations."""

    entity = "users"

    def list(self, filters: Dict[str, Any]) -> ServiceResult:
        user = self.current_user
        if user is not None and not self.is_admin:
            filters["schoolId"] = user.get("schoolId")

        users = strip_sensitive_many(self.store.get_all(self.entity, filters))
        return ServiceResult.ok(users, metadata={"count": len(users)})

    def get(self, entity_id: str) -> ServiceResult:
        record = self.store.get_by_id(self.entity, entity_id)
        if record is None:
            raise NotFoundError("User not found", entity=self.entity, entity_id=entity_id)

        user = self.current_user
        if (
            user is not None
            and not self.is_admin
            and user.get("id") != entity_id
            and user.get("schoolId") != record.get("schoolId")
        ):
            raise NotAuthorizedError("Not authorized to access this user", role=user.get("role"))

        return ServiceResult.ok(strip_sensitive(record))

    def create(self, data: Dict[str, Any]) -> ServiceResult:
        user = self.current_user
        if not (self.is_admin or check_school_admin_access(user)):
            raise NotAuthorizedError("Not authorized to create users", role=(user or {}).get("role"))

        if not self.is_admin:
            data["schoolId"] = user.get("schoolId")
        self._hash_password(data)

        created = self.store.create(self.entity, data)
        return ServiceResult.ok(strip_sensitive(created))

    def update(self, entity_id: str, data: Dict[str, Any]) -> ServiceResult:
        user = self._require_user()

        target = self.store.get_by_id(self.entity, entity_id)
        if target is None:
            raise NotFoundError("User not found", entity=self.entity, entity_id=entity_id)

        if (
            user.get("id") != entity_id
            and not self.is_admin
            and not check_school_admin_access(user, target.get("schoolId"))
        ):
            raise NotAuthorizedError("Not authorized to update this user", role=user.get("role"))

        if not self.is_admin:
            data.pop("role", None)
            data.pop("schoolId", None)
        self._hash_password(data)

        updated = self.store.update(self.entity, entity_id, data)
        return ServiceResult.ok(strip_sensitive(updated))

    def delete(self, entity_id: str) -> ServiceResult:
        if not self.is_admin:
            raise NotAuthorizedError("Not authorized to delete users", role=(self.current_user or {}).get("role"))

        self.store.delete(self.entity, entity_id)
        return ServiceResult.ok(metadata={"message": "User deleted successfully"})


class SchoolHandler(EntityHandler):
    """Offline school operations."""

    entity = "schools"

    def list(self, filters: Dict[str, Any]) -> ServiceResult:
        user = self.current_user
        if user is not None and not self.is_admin:
            filters["id"] = user.get("schoolId")

        schools = self.store.get_all(self.entity, filters)
        return ServiceResult.ok(schools, metadata={"count": len(schools)})

    def get(self, entity_id: str) -> ServiceResult:
        school = self.store.get_by_id(self.entity, entity_id)
        if school is None:
            raise NotFoundError("School not found", entity=self.entity, entity_id=entity_id)

        user = self.current_user
        if user is not None and not self.is_admin and user.get("schoolId") != entity_id:
            raise NotAuthorizedError("Not authorized to access this school", role=user.get("role"))

        return ServiceResult.ok(school)

    def create(self, data: Dict[str, Any]) -> ServiceResult:
        if not self.is_admin:
            raise NotAuthorizedError("Not authorized to create schools", role=(self.current_user or {}).get("role"))

        return ServiceResult.ok(self.store.create(self.entity, data))

    def update(self, entity_id: str, data: Dict[str, Any]) -> ServiceResult:
        user = self._require_user()
        if not (self.is_admin or check_school_admin_access(user, entity_id)):
            raise NotAuthorizedError("Not authorized to update this school", role=user.get("role"))

        return ServiceResult.ok(self.store.update(self.entity, entity_id, data))

    def delete(self, entity_id: str) -> ServiceResult:
        if not self.is_admin:
            raise NotAuthorizedError("Not authorized to delete schools", role=(self.current_user or {}).get("role"))

        self.store.delete(self.entity, entity_id)
        return ServiceResult.ok(metadata={"message": "School deleted successfully"})


class SyncHandler(EntityHandler):
    """Sync endpoints only make sense against the server."""

    entity = "sync"

    def handle(self, request: ApiRequest) -> ServiceResult:
        raise UnavailableError("Sync operations not available in offline mode")
