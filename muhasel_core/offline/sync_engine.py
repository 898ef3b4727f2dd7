# =============================================================================
# muhasel_core/offline/sync_engine.py
# Automatic Synchronization Engine
# =============================================================================
"""
SyncManager - Reconciles the local store with the remote backend.

Each run has two ordered phases:
1. Upload: drain pending sync-queue entries in FIFO order, one remote call
   each; a failed entry is marked ``failed`` and the batch continues
2. Download: fetch remote deltas since the last successful sync and upsert
   them locally, skipping records that still have unsynced local edits

Triggers:
- Fixed interval timer on a background thread
- Connectivity transition to online
- Explicit ``sync_now()``

At most one run executes at a time; a concurrent ``sync_now()`` returns False.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

from muhasel_core.errors import ErrorContext, MuhaselError, NetworkError
from muhasel_core.logging import LogContext
from muhasel_core.offline.api_request import ApiRequest, Operation
from muhasel_core.offline.connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from muhasel_core.offline.local_database import (
    LOCAL_ONLY_FIELDS,
    LocalDatabase,
    QueueOperation,
    SyncQueueEntry,
    SyncStatus,
)
from muhasel_core.offline.remote_backend import RemoteBackend
from muhasel_core.offline.session import AuthSession

logger = logging.getLogger(__name__)

LAST_SYNC_SETTING = "lastSyncTime"

_UPLOAD_OPERATIONS = {
    QueueOperation.CREATE: Operation.CREATE,
    QueueOperation.UPDATE: Operation.UPDATE,
    QueueOperation.DELETE: Operation.DELETE,
}


class SyncPhase(Enum):
    """Sync manager state."""
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncEvent:
    """Notification sent to sync listeners."""
    status: str                                 # syncing | completed | failed
    message: str
    progress: Optional[Dict[str, int]] = None   # {"current": i, "total": n}
    changes: Optional[Dict[str, int]] = None
    last_sync_time: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SyncState:
    """Current sync state."""
    phase: SyncPhase = SyncPhase.IDLE
    last_sync_time: Optional[str] = None
    last_changes: Dict[str, int] = field(default_factory=dict)
    last_error: Optional[str] = None
    total_uploaded: int = 0
    total_downloaded: int = 0


SyncListener = Callable[[SyncEvent], None]


class SyncManager:
    """
    Synchronization between the local SQLite store and the remote backend.

    Usage:
        manager = SyncManager(store, remote, connection, session)
        manager.start()     # interval timer + reconnect trigger
        manager.sync_now()  # force immediate sync
    """

    SYNC_INTERVAL = 300         # Seconds between automatic syncs
    MAX_RETRY_ATTEMPTS = 5      # Failed entries are retried while attempts < this
    ENTITIES = ("users", "schools")

    def __init__(
        self,
        store: LocalDatabase,
        remote: RemoteBackend,
        connection: ConnectionManager,
        session: AuthSession,
        interval_seconds: Optional[int] = None,
        entities: Sequence[str] = ENTITIES,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
    ):
        self.store = store
        self.remote = remote
        self.connection = connection
        self.session = session
        self.interval_seconds = interval_seconds or self.SYNC_INTERVAL
        self.entities = tuple(entities)
        self.max_attempts = max_attempts

        self._state = SyncState()
        self._sync_lock = threading.Lock()
        self._listeners: List[SyncListener] = []
        self._listeners_lock = threading.Lock()
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._unsubscribe_connection: Optional[Callable[[], None]] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def phase(self) -> SyncPhase:
        return self._state.phase

    @property
    def is_syncing(self) -> bool:
        """Check if sync is in progress."""
        return self._state.phase == SyncPhase.SYNCING

    @property
    def last_sync_time(self) -> Optional[str]:
        return self._state.last_sync_time

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Start the interval thread and listen for reconnects."""
        self._state.last_sync_time = self.store.get_setting(LAST_SYNC_SETTING)

        if self._unsubscribe_connection is None:
            self._unsubscribe_connection = self.connection.add_listener(self._on_connection_change)

        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncManager"
        )
        self._sync_thread.start()
        logger.info(f"Sync manager started (interval {self.interval_seconds}s)")

    def stop(self) -> None:
        """Stop the interval thread and the reconnect trigger."""
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
            self._sync_thread = None
        if self._unsubscribe_connection is not None:
            self._unsubscribe_connection()
            self._unsubscribe_connection = None
        logger.info("Sync manager stopped")

    def _sync_loop(self) -> None:
        """Background sync loop."""
        while not self._stop_sync.wait(timeout=self.interval_seconds):
            try:
                self.sync_now()
            except Exception as e:
                logger.error(f"Error in scheduled sync: {e}", exc_info=True)

    def _on_connection_change(self, state: ConnectionState) -> None:
        """Handle connection status changes."""
        if state.status == ConnectionStatus.ONLINE and self.session.is_authenticated and not self.is_syncing:
            logger.info("Connection restored, triggering sync")
            self.sync_now()

    def set_auth_token(self, token: Optional[str]) -> None:
        """Write the shared session token used for remote calls."""
        self.session.set_token(token)

    # =========================================================================
    # SYNC RUN
    # =========================================================================

    def sync_now(self) -> bool:
        """
        Run one reconciliation (upload, then download).

        Returns:
            True if the run completed; False if it was skipped (already
            syncing, offline, not authenticated) or failed
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync already in progress")
            return False

        try:
            if not self.connection.is_online:
                logger.debug("Cannot sync: offline")
                return False
            if not self.session.is_authenticated:
                logger.debug("Cannot sync: not authenticated")
                return False

            self._state.phase = SyncPhase.SYNCING
            self._notify(SyncEvent(status="syncing", message="Sync started"))

            try:
                with LogContext(logger, "Sync run"):
                    changes = self._perform_sync()
                    now = datetime.now(timezone.utc).isoformat()
                    self.store.set_setting(LAST_SYNC_SETTING, now)
            except Exception as e:
                self._state.last_error = str(e)
                self._state.phase = SyncPhase.IDLE
                self._notify(SyncEvent(
                    status="failed",
                    message=f"Sync failed: {e}",
                    error=str(e),
                    last_sync_time=self._state.last_sync_time,
                ))
                return False

            self._state.last_sync_time = now
            self._state.last_changes = changes
            self._state.last_error = None
            self._state.total_uploaded += changes["uploaded"]
            self._state.total_downloaded += changes["downloaded"]
            self._state.phase = SyncPhase.IDLE

            logger.info(
                f"Sync complete: {changes['uploaded']} uploaded, {changes['failed']} failed, "
                f"{changes['downloaded']} downloaded, {changes['skipped']} skipped"
            )
            self._notify(SyncEvent(
                status="completed",
                message="Sync completed",
                changes=changes,
                last_sync_time=now,
            ))
            return True

        finally:
            self._state.phase = SyncPhase.IDLE
            self._sync_lock.release()

    def _perform_sync(self) -> Dict[str, int]:
        if self._state.last_sync_time is None:
            self._state.last_sync_time = self.store.get_setting(LAST_SYNC_SETTING)

        requeued = self.store.requeue_failed(self.max_attempts)
        if requeued:
            logger.info(f"Retrying {requeued} failed sync operations")

        uploaded, failed = self.upload_local_changes()
        downloaded, skipped = self.download_remote_changes()
        return {
            "uploaded": uploaded,
            "failed": failed,
            "downloaded": downloaded,
            "skipped": skipped,
        }

    def upload_local_changes(self) -> tuple:
        """
        Upload phase: replay pending queue entries in FIFO order.

        Returns:
            (uploaded, failed) counts
        """
        pending = self.store.get_pending()
        total = len(pending)
        uploaded = 0
        failed = 0

        if total:
            logger.info(f"Uploading {total} local changes")

        for index, entry in enumerate(pending, start=1):
            try:
                self._upload_entry(entry)
                uploaded += 1
            except MuhaselError as e:
                logger.warning(f"Upload of {entry.entity}/{entry.entity_id} ({entry.operation.value}) failed: {e}")
                self._mark_failed(entry)
                failed += 1
            except Exception as e:
                logger.error(f"Unexpected error uploading queue entry {entry.id}: {e}", exc_info=True)
                self._mark_failed(entry)
                failed += 1

            self._notify(SyncEvent(
                status="syncing",
                message=f"Uploading changes ({index}/{total})...",
                progress={"current": index, "total": total},
            ))

        return uploaded, failed

    def _upload_entry(self, entry: SyncQueueEntry) -> None:
        payload = None
        if entry.operation != QueueOperation.DELETE:
            payload = {k: v for k, v in entry.data.items() if k not in LOCAL_ONLY_FIELDS}

        entity_id = None if entry.operation == QueueOperation.CREATE else entry.entity_id
        request = ApiRequest(entry.entity, _UPLOAD_OPERATIONS[entry.operation], entity_id, payload)

        response = self.remote.send(request, self.session.token)
        if not response.get("success", False):
            raise NetworkError(response.get("message") or "Remote rejected the change", response=response)

        self._record_upload(entry, response.get("data"))

    def _record_upload(self, entry: SyncQueueEntry, canonical: Any) -> None:
        """Local bookkeeping for a change the server has accepted."""
        # the server holds the change now; a local failure must not mark it failed
        with ErrorContext(f"Recording upload of {entry.entity}/{entry.entity_id}") as ctx:
            self.store.mark_entry_status(entry.id, SyncStatus.SYNCED)

            if entry.operation == QueueOperation.DELETE:
                return
            # later queued edits of the same record keep it pending
            if self.store.count_outstanding(entry.entity, entry.entity_id):
                return

            if isinstance(canonical, dict) and canonical:
                self.store.apply_remote(entry.entity, {**canonical, "id": entry.entity_id})
            else:
                self.store.mark_synced(entry.entity, entry.entity_id)
        if ctx.error:
            logger.warning(f"{entry.entity}/{entry.entity_id} was uploaded but its local copy was not updated")

    def _mark_failed(self, entry: SyncQueueEntry) -> None:
        with ErrorContext(f"Marking queue entry {entry.id} failed"):
            self.store.mark_entry_status(entry.id, SyncStatus.FAILED)

    def download_remote_changes(self) -> tuple:
        """
        Download phase: apply remote deltas since the last successful sync.

        Records with unsynced local edits are skipped.

        Returns:
            (downloaded, skipped) counts
        """
        downloaded = 0
        skipped = 0
        last_sync = self._state.last_sync_time

        for entity in self.entities:
            items = self.remote.fetch_changes(entity, last_sync, self.session.token)
            logger.debug(f"Received {len(items)} {entity} changes")

            for item in items:
                item_id = item.get("id") or item.get("_id")
                with ErrorContext(f"Applying remote {entity} {item_id}") as ctx:
                    local = self.store.get_by_id(entity, str(item_id)) if item_id else None
                    if local and local.get("syncStatus") == SyncStatus.PENDING.value:
                        skipped += 1
                        continue
                    self.store.apply_remote(entity, item)
                    downloaded += 1
                if ctx.error:
                    logger.warning(f"Skipped remote {entity} record {item_id}")

        return downloaded, skipped

    # =========================================================================
    # LISTENERS & STATUS
    # =========================================================================

    def add_listener(self, callback: SyncListener) -> Callable[[], None]:
        """
        Register a callback for sync events.

        Returns:
            Function that removes the listener again
        """
        if not callable(callback):
            raise TypeError("Listener must be callable")
        with self._listeners_lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, event: SyncEvent) -> None:
        """Notify all registered listeners."""
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in sync listener: {e}")

    def get_status(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "is_syncing": self.is_syncing,
            "is_online": self.connection.is_online,
            "last_sync_time": self._state.last_sync_time,
            "pending_count": self.store.pending_count(),
            "last_changes": dict(self._state.last_changes),
            "last_error": self._state.last_error,
            "total_uploaded": self._state.total_uploaded,
            "total_downloaded": self._state.total_downloaded,
        }
