# =============================================================================
# muhasel_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Detects and monitors reachability of the remote backend.

Features:
- HEAD request against the configured base URL
- Periodic health checks on a background thread
- Listeners notified on status changes (with unsubscribe handles)
- Forced offline/online override
"""

from __future__ import annotations
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import logging

import requests

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Backend answered
    OFFLINE = "offline"         # Transport failure or forced offline
    DEGRADED = "degraded"       # Backend answered with an error status
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None
    forced: bool = False

    @property
    def is_online(self) -> bool:
        return self.status == ConnectionStatus.ONLINE


ConnectionListener = Callable[[ConnectionState], None]


class ConnectionManager:
    """
    Tracks whether the remote backend is reachable.

    Usage:
        manager = ConnectionManager("https://school.example.com/api")
        manager.initialize()
        if manager.is_online:
            # Use remote backend
        else:
            # Use local fallback
    """

    CHECK_INTERVAL = 30         # Seconds between checks
    CONNECTION_TIMEOUT = 5      # Timeout for the HEAD request

    def __init__(
        self,
        base_url: str,
        check_interval: Optional[int] = None,
        timeout: Optional[int] = None,
    ):
        self.base_url = base_url
        self.check_interval = check_interval or self.CHECK_INTERVAL
        self.timeout = timeout or self.CONNECTION_TIMEOUT
        self._state = ConnectionState()
        self._listeners: List[ConnectionListener] = []
        self._listeners_lock = threading.Lock()
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()
        self._initialized = False

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        """Get current status."""
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Check if the backend is reachable."""
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._state.status == ConnectionStatus.OFFLINE

    def initialize(self, start_monitoring: bool = True) -> None:
        """
        Run the first check and optionally start background monitoring.

        Args:
            start_monitoring: Whether to start background monitoring
        """
        if self._initialized:
            return

        self.check_connection()

        if start_monitoring:
            self.start_monitoring()

        self._initialized = True
        logger.info(f"ConnectionManager initialized. Status: {self._state.status.value}")

    def check_connection(self) -> ConnectionState:
        """
        Check the backend and update state.

        A forced status is left untouched until ``release`` is called.

        Returns:
            Updated ConnectionState
        """
        if self._state.forced:
            return self._state

        self._state.last_check = datetime.now()
        try:
            response = requests.head(
                self.base_url,
                headers={"Cache-Control": "no-cache"},
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.exceptions.RequestException as e:
            self._state.error_message = str(e)
            logger.debug(f"Connection check failed: {e}")
            new_status = ConnectionStatus.OFFLINE
        else:
            if response.status_code < 400:
                self._state.error_message = None
                new_status = ConnectionStatus.ONLINE
            else:
                self._state.error_message = f"HTTP {response.status_code}"
                new_status = ConnectionStatus.DEGRADED

        if new_status == ConnectionStatus.ONLINE:
            self._state.last_online = datetime.now()
            self._state.consecutive_failures = 0
        else:
            self._state.consecutive_failures += 1

        self._set_status(new_status)
        return self._state

    def _set_status(self, new_status: ConnectionStatus) -> None:
        old_status = self._state.status
        self._state.status = new_status
        if old_status != new_status:
            logger.info(f"Connection status changed: {old_status.value} -> {new_status.value}")
            self._notify_listeners()

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
            self._monitor_thread = None
        self._initialized = False
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        """Background monitoring loop."""
        while not self._stop_monitoring.wait(timeout=self.check_interval):
            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def add_listener(self, callback: ConnectionListener) -> Callable[[], None]:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes

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

    def _notify_listeners(self) -> None:
        """Notify all registered listeners of a status change."""
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Error in connection listener: {e}")

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self._state.forced = True
        self._set_status(ConnectionStatus.OFFLINE)
        logger.info("Forced offline mode")

    def force_online(self) -> None:
        """
        Force online mode without probing.

        Used by tests and by callers that already know the backend is up.
        The next ``check_connection`` call after ``release`` checks again.
        """
        self._state.forced = True
        self._state.last_online = datetime.now()
        self._set_status(ConnectionStatus.ONLINE)
        logger.info("Forced online mode")

    def release(self) -> ConnectionState:
        """Drop a forced status and check immediately."""
        self._state.forced = False
        return self.check_connection()

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "forced": self._state.forced,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
