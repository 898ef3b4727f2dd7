# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

from muhasel_core.auth import hash_password, strip_sensitive
from muhasel_core.offline import (
    ApiRequest,
    AuthSession,
    ConnectionManager,
    HybridApiRouter,
    LocalDatabase,
    RemoteBackend,
    SyncManager,
)

# Low bcrypt cost keeps the suite fast
TEST_BCRYPT_ROUNDS = 4

ADMIN_PASSWORD = "admin-pass"
STAFF_PASSWORD = "staff-pass"


# =============================================================================
# FAKE REMOTE BACKEND
# =============================================================================

class FakeRemote(RemoteBackend):
    """
    In-memory remote backend that records every call.

    By default every request succeeds and echoes its body back as ``data``.
    Set ``responder`` to a callable taking the ApiRequest to return a custom
    envelope or raise (e.g. NetworkError). ``changes`` holds the deltas
    returned by ``fetch_changes`` per entity; ``fetch_error`` makes
    ``fetch_changes`` raise.
    """

    def __init__(self):
        self.calls: List[ApiRequest] = []
        self.tokens: List[Optional[str]] = []
        self.fetch_calls: List[Dict[str, Any]] = []
        self.responder: Optional[Callable[[ApiRequest], Dict[str, Any]]] = None
        self.changes: Dict[str, List[Dict[str, Any]]] = {}
        self.fetch_error: Optional[Exception] = None
        self.closed = False

    def send(self, request: ApiRequest, token: Optional[str] = None) -> Dict[str, Any]:
        self.calls.append(request)
        self.tokens.append(token)
        if self.responder is not None:
            return self.responder(request)

        data = dict(request.data or {})
        if request.entity_id:
            data.setdefault("id", request.entity_id)
        return {"success": True, "data": data}

    def fetch_changes(self, entity, last_sync, token=None):
        self.fetch_calls.append({"entity": entity, "last_sync": last_sync, "token": token})
        if self.fetch_error is not None:
            raise self.fetch_error
        return [dict(item) for item in self.changes.get(entity, [])]

    def close(self) -> None:
        self.closed = True

    @property
    def endpoints(self) -> List[str]:
        return [f"{r.method} {r.endpoint}" for r in self.calls]


# =============================================================================
# CORE COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def store():
    """Fresh in-memory local store"""
    db = LocalDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def connection():
    """Connection manager forced online (no real network)"""
    manager = ConnectionManager("http://muhasel.test/api", check_interval=3600, timeout=1)
    manager.force_online()
    return manager


@pytest.fixture
def session():
    return AuthSession()


@pytest.fixture
def sync_manager(store, fake_remote, connection, session):
    manager = SyncManager(store, fake_remote, connection, session, interval_seconds=3600)
    yield manager
    manager.stop()


@pytest.fixture
def router(store, fake_remote, connection, session, sync_manager):
    return HybridApiRouter(
        store,
        fake_remote,
        connection,
        session,
        sync_manager=sync_manager,
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
    )


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def school(store):
    """A synced school"""
    return store.apply_remote("schools", {
        "id": "school-1",
        "name": "Al Noor School",
        "email": "office@alnoor.test",
        "phone": "+212600000001",
        "address": "12 Rue Hassan II, Rabat",
        "subscriptionStart": "2024-09-01",
        "subscriptionEnd": "2025-08-31",
        "settings": {"currency": "MAD", "language": "ar"},
    })


@pytest.fixture
def other_school(store):
    return store.apply_remote("schools", {
        "id": "school-2",
        "name": "Ibn Sina School",
        "email": "office@ibnsina.test",
        "phone": "+212600000002",
        "address": "4 Avenue Mohammed V, Fes",
        "subscriptionStart": "2024-09-01",
        "subscriptionEnd": "2025-08-31",
    })


@pytest.fixture
def admin_user(store):
    """Synced platform admin with a known password"""
    return store.apply_remote("users", {
        "id": "admin-1",
        "name": "Platform Admin",
        "email": "admin@muhasel.test",
        "username": "admin",
        "password": hash_password(ADMIN_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
        "role": "admin",
        "schoolId": None,
    })


@pytest.fixture
def school_admin(store, school):
    return store.apply_remote("users", {
        "id": "sadmin-1",
        "name": "Fatima Zahra",
        "email": "fatima@alnoor.test",
        "username": "fatima",
        "password": hash_password(STAFF_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
        "role": "schoolAdmin",
        "schoolId": school["id"],
    })


@pytest.fixture
def staff_user(store, school):
    return store.apply_remote("users", {
        "id": "staff-1",
        "name": "Youssef Amrani",
        "email": "youssef@alnoor.test",
        "username": "youssef",
        "password": hash_password(STAFF_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
        "role": "user",
        "schoolId": school["id"],
        "gradeLevels": ["CE1", "CE2"],
    })


@pytest.fixture
def other_school_user(store, other_school):
    return store.apply_remote("users", {
        "id": "staff-2",
        "name": "Karim Bennani",
        "email": "karim@ibnsina.test",
        "username": "karim",
        "password": hash_password(STAFF_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
        "role": "user",
        "schoolId": other_school["id"],
    })


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

@pytest.fixture
def login_as(session):
    """Put a user into the session as if they had logged in"""
    def _login(user: Dict[str, Any], token: Optional[str] = None) -> str:
        token = token or f"token-{user['id']}"
        session.set(token, strip_sensitive(user))
        return token
    return _login
