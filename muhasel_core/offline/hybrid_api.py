# =============================================================================
# muhasel_core/offline/hybrid_api.py
# Hybrid API Router - Single API for Online/Offline Operations
# =============================================================================
"""
HybridApiRouter - the entry point for every data request.

This router decides per call where a request runs:
- Online: the remote backend answers; its envelope is returned verbatim
- Online but the call fails (transport error, timeout, 5xx): the offline
  handler answers instead
- Offline: the offline handler for the entity answers from the local store

Authentication has its own rules (offline login against stored bcrypt
hashes, ``me`` from the session, ``logout`` always local).

Usage:
------
from muhasel_core.offline import get_runtime

api = get_runtime().router
result = api.request("/auth/login", "POST", {"emailOrUsername": "ali", "password": "secret"})
users = api.request("/users", "GET")
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from muhasel_core.auth import (
    extract_user_id,
    hash_password,
    is_password_hash,
    make_offline_token,
    strip_sensitive,
    verify_password,
)
from muhasel_core.errors import (
    ErrorContext,
    ErrorKind,
    InvalidCredentialsError,
    NetworkError,
    NotAuthenticatedError,
    UnavailableError,
    ValidationError,
    handle_error,
)
from muhasel_core.offline.api_request import ApiRequest
from muhasel_core.offline.connection_manager import ConnectionManager
from muhasel_core.offline.handlers import EntityHandler, SchoolHandler, SyncHandler, UserHandler
from muhasel_core.offline.local_database import LocalDatabase, SyncStatus
from muhasel_core.offline.remote_backend import RemoteBackend
from muhasel_core.offline.session import AuthSession
from muhasel_core.services.base_service import BaseService, ServiceResult

# HTTP status of a remote rejection -> error kind reported to the caller
_STATUS_KINDS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.NOT_AUTHENTICATED,
    403: ErrorKind.NOT_AUTHORIZED,
    404: ErrorKind.NOT_FOUND,
    422: ErrorKind.VALIDATION,
}


class HybridApiRouter(BaseService):
    """
    Routes requests to the remote backend or the offline handlers.

    Every call answers with a ServiceResult; no exception escapes.
    """

    def __init__(
        self,
        store: LocalDatabase,
        remote: RemoteBackend,
        connection: ConnectionManager,
        session: AuthSession,
        sync_manager=None,
        bcrypt_rounds: int = 10,
    ):
        super().__init__()
        self.store = store
        self.remote = remote
        self.connection = connection
        self.session = session
        self.sync_manager = sync_manager
        self.bcrypt_rounds = bcrypt_rounds

        self._handlers: Dict[str, EntityHandler] = {}
        for handler_cls in (UserHandler, SchoolHandler, SyncHandler):
            self.register_handler(handler_cls(store, session, bcrypt_rounds=bcrypt_rounds))

    def register_handler(self, handler: EntityHandler) -> None:
        """Add (or replace) the offline handler for an entity tag."""
        self._handlers[handler.entity] = handler

    @property
    def is_online(self) -> bool:
        return self.connection.is_online

    # =========================================================================
    # SESSION
    # =========================================================================

    def set_auth_token(self, token: Optional[str], user: Optional[Dict[str, Any]] = None) -> None:
        """Store the session and hand the token to the sync manager."""
        self.session.set(token, user)
        if self.sync_manager is not None:
            self.sync_manager.set_auth_token(token)

    def clear_auth_token(self) -> None:
        self.session.clear()
        if self.sync_manager is not None:
            self.sync_manager.set_auth_token(None)

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        return self.session.user

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        data: Optional[Dict[str, Any]] = None,
    ) -> ServiceResult:
        """
        Execute a request given in ``/<entity>[/<id>]`` form.

        Args:
            endpoint: e.g. "/users/abc123"
            method: HTTP verb
            data: Body, list filter, or credentials

        Returns:
            ServiceResult
        """
        try:
            api_request = ApiRequest.parse(endpoint, method, data)
        except ValidationError as e:
            return ServiceResult.from_exception(e)
        return self.dispatch(api_request)

    def dispatch(self, request: ApiRequest) -> ServiceResult:
        """Execute a typed request."""
        if request.is_auth:
            return self.safe_execute(f"Auth {request.auth_action}", self._handle_auth, request)

        if self.is_online:
            try:
                payload = self.remote.send(request, self.session.token)
            except NetworkError as e:
                if not e.transient:
                    return self._rejected(e)
                self.logger.warning(
                    f"Online request failed ({request.method} {request.endpoint}), "
                    f"falling back to offline: {e.message}"
                )
            except Exception as e:
                self.logger.error(
                    f"Remote backend error ({request.method} {request.endpoint}), "
                    f"falling back to offline: {e}",
                    exc_info=True,
                )
            else:
                return ServiceResult.from_envelope(payload)

        return self.safe_execute(
            f"Offline {request.method} {request.endpoint}",
            self._offline_request,
            request,
        )

    def _offline_request(self, request: ApiRequest) -> ServiceResult:
        handler = self._handlers.get(request.entity)
        if handler is None:
            raise UnavailableError(f"Offline operation not supported for endpoint: {request.endpoint}")
        return handler.handle(request)

    def _rejected(self, error: NetworkError) -> ServiceResult:
        """The server answered and said no; report it without falling back."""
        handle_error(error)
        kind = _STATUS_KINDS.get(error.status, ErrorKind.NETWORK)
        return ServiceResult.fail(error.message, error_code=kind.value, metadata=error.details or None)

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    def _handle_auth(self, request: ApiRequest) -> ServiceResult:
        action = request.auth_action
        if action == "login":
            return self._login(request.data or {})
        if action == "me":
            return self._me()
        if action == "logout":
            return self._logout()

        if not self.is_online:
            raise UnavailableError()
        try:
            payload = self.remote.send(request, self.session.token)
        except NetworkError as e:
            if e.transient:
                raise
            return self._rejected(e)
        return ServiceResult.from_envelope(payload)

    def _login(self, credentials: Dict[str, Any]) -> ServiceResult:
        identifier = (
            credentials.get("emailOrUsername")
            or credentials.get("email")
            or credentials.get("username")
        )
        password = credentials.get("password")
        if not identifier or not password:
            raise ValidationError("Email/username and password are required", field="emailOrUsername")

        if self.is_online:
            result = self._online_login(credentials, password)
            if result is not None:
                return result

        return self._offline_login(identifier, password)

    def _online_login(self, credentials: Dict[str, Any], password: str) -> Optional[ServiceResult]:
        """Server login; None when it failed for any reason."""
        try:
            payload = self.remote.send(ApiRequest.auth("login", credentials))
        except NetworkError as e:
            self.logger.warning(f"Online login failed, trying offline login: {e.message}")
            return None
        except Exception as e:
            self.logger.error(f"Remote backend error during login, trying offline login: {e}", exc_info=True)
            return None

        result = ServiceResult.from_envelope(payload)
        data = result.data if isinstance(result.data, dict) else {}
        if not (result.success and data.get("token") and data.get("user")):
            self.logger.warning(f"Online login rejected, trying offline login: {result.message}")
            return None

        self._remember_user(data["user"], password)
        self.set_auth_token(data["token"], strip_sensitive(data["user"]))
        return result

    def _offline_login(self, identifier: str, password: str) -> ServiceResult:
        user = self.store.find_user_by_credentials(identifier)
        # unknown user and wrong password must be indistinguishable
        if user is None or not verify_password(password, user.get("password")):
            raise InvalidCredentialsError()

        token = make_offline_token(user["id"])
        updated = self.store.update(
            "users", user["id"], {"lastLogin": datetime.now(timezone.utc).isoformat()}
        )
        user_data = strip_sensitive(updated)
        self.set_auth_token(token, user_data)

        self.logger.info(f"Offline login for user {user['id']}")
        return ServiceResult.ok({"token": token, "user": user_data}, metadata={"offline": True})

    def _remember_user(self, user: Dict[str, Any], password: str) -> None:
        """Keep a server-confirmed user (with a password hash) for later offline logins."""
        user_id = user.get("id") or user.get("_id")
        with ErrorContext(f"Storing user {user_id} for offline use"):
            existing = self.store.get_by_id("users", str(user_id)) if user_id else None
            if existing and existing.get("syncStatus") == SyncStatus.PENDING.value:
                self.logger.debug(f"User {user_id} has unsynced local edits, not overwriting")
                return

            record = dict(user)
            if not is_password_hash(record.get("password")):
                record["password"] = hash_password(password, rounds=self.bcrypt_rounds)
            self.store.apply_remote("users", record)

    def _me(self) -> ServiceResult:
        if self.session.user:
            return ServiceResult.ok(self.session.user)

        user_id = extract_user_id(self.session.token)
        if user_id:
            user = self.store.get_by_id("users", user_id)
            if user:
                user_data = strip_sensitive(user)
                self.session.set_user(user_data)
                return ServiceResult.ok(user_data)

        raise NotAuthenticatedError()

    def _logout(self) -> ServiceResult:
        self.clear_auth_token()
        return ServiceResult.ok(metadata={"message": "Logged out successfully"})

    # =========================================================================
    # SYNC SHORTCUTS
    # =========================================================================

    def sync_now(self) -> bool:
        """Trigger a sync run (False when no sync manager is attached)."""
        if self.sync_manager is None:
            return False
        return self.sync_manager.sync_now()

    def get_sync_status(self) -> Dict[str, Any]:
        if self.sync_manager is None:
            return {"is_online": self.is_online, "pending_count": self.store.pending_count()}
        return self.sync_manager.get_status()
