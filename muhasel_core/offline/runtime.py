# =============================================================================
# muhasel_core/offline/runtime.py
# Wiring of the offline core components
# =============================================================================
"""
OfflineRuntime - owns one instance of every offline component.

The runtime creates the session object and injects it into both the router
and the sync manager, so a login through the router is immediately visible
to the next sync run.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Optional
import logging

from muhasel_core.config import Settings, load_settings
from muhasel_core.logging import setup_logging
from muhasel_core.offline.connection_manager import ConnectionManager
from muhasel_core.offline.hybrid_api import HybridApiRouter
from muhasel_core.offline.local_database import LocalDatabase
from muhasel_core.offline.remote_backend import RemoteBackend, create_remote_backend
from muhasel_core.offline.session import AuthSession
from muhasel_core.offline.sync_engine import SyncManager

logger = logging.getLogger(__name__)


@dataclass
class OfflineRuntime:
    """The wired offline core."""
    settings: Settings
    store: LocalDatabase
    connection: ConnectionManager
    remote: RemoteBackend
    session: AuthSession
    sync_manager: SyncManager
    router: HybridApiRouter

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> OfflineRuntime:
        """
        Build all components from settings (loaded from the environment when
        not given). Nothing is started.
        """
        settings = settings or load_settings()

        store = LocalDatabase(settings.database_path)
        connection = ConnectionManager(
            settings.api_url,
            check_interval=settings.check_interval,
            timeout=min(settings.request_timeout, ConnectionManager.CONNECTION_TIMEOUT),
        )
        remote = create_remote_backend(settings)
        session = AuthSession()
        sync_manager = SyncManager(
            store,
            remote,
            connection,
            session,
            interval_seconds=settings.sync_interval,
        )
        router = HybridApiRouter(
            store,
            remote,
            connection,
            session,
            sync_manager=sync_manager,
            bcrypt_rounds=settings.bcrypt_rounds,
        )
        return cls(settings, store, connection, remote, session, sync_manager, router)

    def start(self, monitor: bool = True) -> None:
        """
        Create the schema, run the first connectivity check and start the
        background threads.

        Args:
            monitor: Start the connectivity and sync threads
        """
        self.store.initialize()
        self.connection.initialize(start_monitoring=monitor)
        if monitor:
            self.sync_manager.start()
        logger.info(f"Offline runtime started ({self.connection.status.value})")

    def stop(self) -> None:
        """Stop background threads and release resources."""
        self.sync_manager.stop()
        self.connection.stop_monitoring()
        self.remote.close()
        self.store.close()
        logger.info("Offline runtime stopped")


# Singleton accessor
_runtime: Optional[OfflineRuntime] = None
_runtime_lock = threading.Lock()


def get_runtime(settings: Optional[Settings] = None) -> OfflineRuntime:
    """
    Get the process-wide runtime, creating and starting it on first use.

    Args:
        settings: Used only on the first call

    Returns:
        OfflineRuntime singleton
    """
    global _runtime
    if _runtime is None:
        with _runtime_lock:
            if _runtime is None:
                settings = settings or load_settings()
                setup_logging(level=settings.log_level)
                runtime = OfflineRuntime.from_settings(settings)
                runtime.start()
                _runtime = runtime
    return _runtime


def shutdown_runtime() -> None:
    """Stop and forget the process-wide runtime."""
    global _runtime
    with _runtime_lock:
        if _runtime is not None:
            _runtime.stop()
            _runtime = None
