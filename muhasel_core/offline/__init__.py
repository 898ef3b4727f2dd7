# =============================================================================
# muhasel_core/offline/__init__.py
# Offline-First Architecture for Muhasel
# =============================================================================
"""
Offline-First Architecture Module

School staff keep working when the school server is unreachable: reads and
writes go to a local SQLite copy, every local change is queued, and the
queue is replayed against the server once the connection comes back.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                    OFFLINE-FIRST ARCHITECTURE                    │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 HybridApiRouter                           │  │
│   │      (Single API - callers use request() only)            │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                           │                       │
│              ▼                           ▼                       │
│   ┌──────────────────┐        ┌──────────────────┐              │
│   │  RemoteBackend   │        │ Offline handlers │              │
│   │ (HTTP/Supabase)  │        │ (users, schools) │              │
│   └──────────────────┘        └──────────────────┘              │
│              ▲                           │                       │
│              │     ┌──────────────┐      ▼                       │
│              └─────│ SyncManager  │  ┌──────────────────┐        │
│                    │ (upload then │◄─│ LocalDatabase +  │        │
│                    │  download)   │  │   sync_queue     │        │
│                    └──────────────┘  └──────────────────┘        │
│                           ▲                                      │
│                    ┌──────────────────┐                          │
│                    │ ConnectionManager│ (reconnect -> sync)      │
│                    └──────────────────┘                          │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from muhasel_core.offline import get_runtime

api = get_runtime().router
api.request("/auth/login", "POST", {"emailOrUsername": "ali", "password": "secret"})
result = api.request("/users", "GET")
print(result.success, result.data)
"""

from muhasel_core.offline.api_request import (
    ApiRequest,
    Operation,
)

from muhasel_core.offline.session import AuthSession

from muhasel_core.offline.local_database import (
    LocalDatabase,
    EntitySchema,
    SyncQueueEntry,
    QueueOperation,
    SyncStatus,
)

from muhasel_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from muhasel_core.offline.remote_backend import (
    RemoteBackend,
    HttpRemoteBackend,
    SupabaseRemoteBackend,
    create_remote_backend,
)

from muhasel_core.offline.sync_engine import (
    SyncManager,
    SyncEvent,
    SyncPhase,
    SyncState,
)

from muhasel_core.offline.handlers import (
    EntityHandler,
    UserHandler,
    SchoolHandler,
    SyncHandler,
)

from muhasel_core.offline.hybrid_api import HybridApiRouter

from muhasel_core.offline.runtime import (
    OfflineRuntime,
    get_runtime,
    shutdown_runtime,
)

__all__ = [
    # Request descriptor & session
    "ApiRequest",
    "Operation",
    "AuthSession",
    # Local store
    "LocalDatabase",
    "EntitySchema",
    "SyncQueueEntry",
    "QueueOperation",
    "SyncStatus",
    # Connectivity
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Remote backend
    "RemoteBackend",
    "HttpRemoteBackend",
    "SupabaseRemoteBackend",
    "create_remote_backend",
    # Sync
    "SyncManager",
    "SyncEvent",
    "SyncPhase",
    "SyncState",
    # Router
    "EntityHandler",
    "UserHandler",
    "SchoolHandler",
    "SyncHandler",
    "HybridApiRouter",
    # Runtime
    "OfflineRuntime",
    "get_runtime",
    "shutdown_runtime",
]
