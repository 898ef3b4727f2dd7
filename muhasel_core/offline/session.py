# =============================================================================
# muhasel_core/offline/session.py
# Authentication session shared by the router and the sync manager
# =============================================================================
"""
AuthSession - the current bearer token and user.

One instance is created by the runtime and handed to both the hybrid API
router (which writes it on login/logout) and the sync manager (which reads
the token for every remote call).
"""

from __future__ import annotations
import threading
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class AuthSession:
    """Thread-safe holder of the process-wide authentication state."""

    def __init__(self):
        self._token: Optional[str] = None
        self._user: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def set(self, token: Optional[str], user: Optional[Dict[str, Any]] = None) -> None:
        """Replace token and user (user may be None when only the token is known)."""
        with self._lock:
            self._token = token
            self._user = dict(user) if user else None
        logger.debug("Auth session updated")

    def set_token(self, token: Optional[str]) -> None:
        """Replace the token; clearing it also forgets the user."""
        with self._lock:
            self._token = token
            if token is None:
                self._user = None

    def set_user(self, user: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            self._user = dict(user) if user else None

    def clear(self) -> None:
        """Forget token and user."""
        with self._lock:
            self._token = None
            self._user = None
        logger.debug("Auth session cleared")
