# =============================================================================
# muhasel_core/offline/remote_backend.py
# Remote Backend Connectors (JSON-over-HTTP and Supabase)
# =============================================================================
"""
RemoteBackend - the only place that talks to the server.

Two implementations share one contract:
- HttpRemoteBackend: the school server's REST API, ``{success, data, message}``
  envelopes over JSON
- SupabaseRemoteBackend: the same entities stored in Supabase tables

Every failure (transport error, timeout, non-2xx status, rejected envelope)
is raised as NetworkError; callers decide whether to fall back or retry.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

import requests

from muhasel_core.auth.tokens import is_offline_token
from muhasel_core.errors import NetworkError, ValidationError
from muhasel_core.offline.api_request import ApiRequest, Operation

logger = logging.getLogger(__name__)


class RemoteBackend(ABC):
    """Abstract base class for remote backends"""

    @abstractmethod
    def send(self, request: ApiRequest, token: Optional[str] = None) -> Dict[str, Any]:
        """
        Execute a request remotely.

        Args:
            request: What to do
            token: Bearer token of the current session, if any

        Returns:
            Response envelope ``{"success": bool, "data"?: ..., "message"?: str}``

        Raises:
            NetworkError: Transport failure, timeout or rejected request
        """
        pass

    @abstractmethod
    def fetch_changes(
        self,
        entity: str,
        last_sync: Optional[str],
        token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch records of an entity changed since ``last_sync``.

        Args:
            entity: Entity tag ("users", "schools")
            last_sync: ISO-8601 timestamp, or None for all records
            token: Bearer token

        Raises:
            NetworkError: Transport failure, timeout or rejected request
        """
        pass

    def close(self) -> None:
        """Release network resources (optional)."""


class HttpRemoteBackend(RemoteBackend):
    """REST backend speaking the ``{success, data, message}`` envelope."""

    def __init__(self, base_url: str, timeout: int = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def send(self, request: ApiRequest, token: Optional[str] = None) -> Dict[str, Any]:
        params = None
        body = None
        if request.method == "GET":
            params = {k: v for k, v in (request.data or {}).items() if v is not None}
        elif request.data is not None:
            body = request.data

        return self._make_request(request.endpoint, request.method, token, params=params, data=body)

    def fetch_changes(
        self,
        entity: str,
        last_sync: Optional[str],
        token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {"lastSync": last_sync} if last_sync else None
        payload = self._make_request(f"/sync/{entity}", "GET", token, params=params)

        if not payload.get("success"):
            raise NetworkError(
                payload.get("message") or f"Failed to fetch {entity} changes",
                response=payload,
            )
        return list(payload.get("data") or [])

    def _make_request(
        self,
        endpoint: str,
        method: str = "GET",
        token: Optional[str] = None,
        params: Optional[Dict] = None,
        data: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """
        Make HTTP request with error handling

        Args:
            endpoint: API endpoint (appended to base_url)
            method: HTTP method (GET, POST, etc.)
            token: Bearer token, sent as Authorization header
            params: Query parameters
            data: Request body data

        Returns:
            Decoded JSON envelope
        """
        url = f"{self.base_url}{endpoint}"
        headers = {"Authorization": f"Bearer {token}"} if token else None

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=data,
                headers=headers,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"API request failed for {method} {endpoint}: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"success": response.ok, "data": payload}

        if not response.ok:
            message = payload.get("message") or payload.get("error") or f"HTTP {response.status_code}"
            logger.debug(f"{method} {endpoint} -> {response.status_code}: {message}")
            raise NetworkError(str(message), status=response.status_code, response=payload)

        return payload

    def close(self) -> None:
        self.session.close()


class SupabaseRemoteBackend(RemoteBackend):
    """
    Supabase backend: entity tags map to tables of the same name.

    Auth requests use Supabase Auth; the profile row is read from ``users``.
    """

    def __init__(self, client):
        self.client = client

    def send(self, request: ApiRequest, token: Optional[str] = None) -> Dict[str, Any]:
        try:
            if request.is_auth:
                return self._auth(request, token)
            self._authorize(token)
            return self._table_request(request)
        except (NetworkError, ValidationError):
            raise
        except Exception as e:
            raise NetworkError(f"Supabase request failed for {request.endpoint}: {e}") from e

    def fetch_changes(
        self,
        entity: str,
        last_sync: Optional[str],
        token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        try:
            self._authorize(token)
            query = self.client.table(entity).select("*")
            if last_sync:
                query = query.gte("updatedAt", last_sync)
            response = query.execute()
        except Exception as e:
            raise NetworkError(f"Failed to fetch {entity} changes: {e}") from e
        return list(response.data or [])

    def _authorize(self, token: Optional[str]) -> None:
        # offline tokens mean nothing to the server
        if token and not is_offline_token(token):
            self.client.postgrest.auth(token)

    def _table_request(self, request: ApiRequest) -> Dict[str, Any]:
        table = self.client.table(request.entity)
        data = request.data or {}

        if request.operation == Operation.LIST:
            query = table.select("*")
            for key, value in data.items():
                query = query.is_(key, "null") if value is None else query.eq(key, value)
            response = query.execute()
            return {"success": True, "data": response.data or [], "count": len(response.data or [])}

        if request.operation == Operation.GET:
            response = table.select("*").eq("id", request.entity_id).execute()
            if not response.data:
                raise NetworkError(f"{request.entity} {request.entity_id} not found", status=404)
            return {"success": True, "data": response.data[0]}

        if request.operation == Operation.CREATE:
            response = table.insert(data).execute()
            return {"success": True, "data": (response.data or [data])[0]}

        if request.operation == Operation.UPDATE:
            response = table.update(data).eq("id", request.entity_id).execute()
            if not response.data:
                raise NetworkError(f"{request.entity} {request.entity_id} not found", status=404)
            return {"success": True, "data": response.data[0]}

        table.delete().eq("id", request.entity_id).execute()
        return {"success": True, "message": f"{request.entity} deleted"}

    def _auth(self, request: ApiRequest, token: Optional[str]) -> Dict[str, Any]:
        action = request.auth_action
        data = request.data or {}

        if action == "login":
            identifier = data.get("emailOrUsername") or data.get("email") or data.get("username")
            response = self.client.auth.sign_in_with_password(
                {"email": identifier, "password": data.get("password")}
            )
            if response.session is None:
                raise NetworkError("Invalid credentials", status=401)
            profile = self._profile(response.user.email)
            return {
                "success": True,
                "data": {"token": response.session.access_token, "user": profile},
            }

        if action == "me":
            response = self.client.auth.get_user(token)
            if response is None or response.user is None:
                raise NetworkError("Not authenticated", status=401)
            return {"success": True, "data": self._profile(response.user.email)}

        if action == "logout":
            self.client.auth.sign_out()
            return {"success": True, "message": "Logged out successfully"}

        raise NetworkError(f"Unsupported auth action: {action}", status=400)

    def _profile(self, email: str) -> Dict[str, Any]:
        response = self.client.table("users").select("*").eq("email", email).execute()
        if not response.data:
            raise NetworkError("User profile not found", status=404)
        return response.data[0]


def create_remote_backend(settings) -> RemoteBackend:
    """
    Build the backend selected by ``settings.backend``.

    Args:
        settings: muhasel_core.config.Settings

    Returns:
        RemoteBackend instance
    """
    if settings.backend == "supabase":
        from supabase import create_client

        client = create_client(settings.supabase_url, settings.supabase_key)
        logger.info("Using Supabase remote backend")
        return SupabaseRemoteBackend(client)

    logger.info(f"Using HTTP remote backend at {settings.api_url}")
    return HttpRemoteBackend(settings.api_url, timeout=settings.request_timeout)
