# =============================================================================
# muhasel_core/offline/api_request.py
# Typed request descriptor shared by the router and the remote backends
# =============================================================================
"""
ApiRequest - what a caller wants done, independent of where it runs.

The online path turns it into an HTTP call (or a Supabase table call), the
offline path hands it to the entity handler registered for its entity.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from muhasel_core.errors import ValidationError

AUTH_ENTITY = "auth"


class Operation(Enum):
    """Operations a request can ask for, with their HTTP verbs."""
    LIST = "list"
    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def http_method(self) -> str:
        return _HTTP_METHODS[self]


_HTTP_METHODS = {
    Operation.LIST: "GET",
    Operation.GET: "GET",
    Operation.CREATE: "POST",
    Operation.UPDATE: "PUT",
    Operation.DELETE: "DELETE",
}


@dataclass(frozen=True)
class ApiRequest:
    """
    A single caller request.

    Attributes:
        entity: Entity tag ("users", "schools", "sync", "auth", ...)
        operation: What to do with it
        entity_id: Target id (for auth requests: the action, e.g. "login")
        data: Body for create/update, filter for list, credentials for login
    """
    entity: str
    operation: Operation
    entity_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = field(default=None, compare=False)

    @property
    def endpoint(self) -> str:
        if self.entity_id:
            return f"/{self.entity}/{self.entity_id}"
        return f"/{self.entity}"

    @property
    def method(self) -> str:
        return self.operation.http_method

    @property
    def is_auth(self) -> bool:
        return self.entity == AUTH_ENTITY

    @property
    def auth_action(self) -> Optional[str]:
        return self.entity_id if self.is_auth else None

    @classmethod
    def auth(cls, action: str, data: Optional[Dict[str, Any]] = None) -> ApiRequest:
        """Build an auth request (login, me, logout, register, ...)."""
        operation = Operation.GET if action == "me" else Operation.CREATE
        return cls(AUTH_ENTITY, operation, action, data)

    @classmethod
    def parse(
        cls,
        endpoint: str,
        method: str = "GET",
        data: Optional[Dict[str, Any]] = None,
    ) -> ApiRequest:
        """
        Build a request from the ``/<entity>[/<id>]`` string form.

        Args:
            endpoint: e.g. "/users/abc123"
            method: HTTP verb
            data: Body or filter

        Raises:
            ValidationError: Empty endpoint or unsupported verb
        """
        path = endpoint.split("?", 1)[0]
        parts = [p for p in path.split("/") if p]
        if not parts:
            raise ValidationError("Invalid endpoint", field="endpoint")

        entity = parts[0]
        entity_id = "/".join(parts[1:]) or None
        method = (method or "GET").upper()

        if method == "GET":
            operation = Operation.GET if entity_id else Operation.LIST
        elif method == "POST":
            operation = Operation.CREATE
        elif method in ("PUT", "PATCH"):
            operation = Operation.UPDATE
        elif method == "DELETE":
            operation = Operation.DELETE
        else:
            raise ValidationError(f"Unsupported method: {method}", field="method")

        if entity == AUTH_ENTITY and entity_id:
            return cls(AUTH_ENTITY, operation, entity_id, data)

        return cls(entity, operation, entity_id, data)
