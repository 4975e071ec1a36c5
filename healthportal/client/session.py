"""Client-side session state: the signed-in user and their raw tokens.

One ``SessionContext`` is created by the caller and handed to both the API
wrapper and the router. Every mutation happens under the context's lock.
"""
import threading
from contextlib import contextmanager
from typing import Any, Dict, Optional

from healthportal.core.logging import get_logger
from healthportal.domain.user import UserRole

logger = get_logger(__name__)


class SessionContext:
    """Holds ``user``, ``access_token`` and ``refresh_token``. Starts empty."""

    def __init__(self):
        self._lock = threading.RLock()
        self._user: Optional[Dict[str, Any]] = None
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None

    @contextmanager
    def transaction(self):
        """Hold the lock across a read-then-write sequence."""
        with self._lock:
            yield self

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return dict(self._user) if self._user else None

    @property
    def access_token(self) -> Optional[str]:
        with self._lock:
            return self._access_token

    @property
    def refresh_token(self) -> Optional[str]:
        with self._lock:
            return self._refresh_token

    @property
    def is_authenticated(self) -> bool:
        with self._lock:
            return self._user is not None and self._access_token is not None

    @property
    def role(self) -> Optional[UserRole]:
        with self._lock:
            if not self._user or "role" not in self._user:
                return None
            try:
                return UserRole(self._user["role"])
            except ValueError:
                logger.warning("Session user has an unknown role")
                return None

    def apply_login(self, data: Dict[str, Any]) -> None:
        """Store the ``{user, token, refreshToken}`` payload of login or registration."""
        with self._lock:
            self._user = dict(data["user"])
            self._access_token = data["token"]
            self._refresh_token = data["refreshToken"]

    def apply_tokens(self, data: Dict[str, Any]) -> None:
        """Store the ``{token, refreshToken}`` payload of a refresh."""
        with self._lock:
            self._access_token = data["token"]
            self._refresh_token = data["refreshToken"]

    def set_user(self, user: Dict[str, Any]) -> None:
        with self._lock:
            self._user = dict(user)

    def clear(self) -> None:
        with self._lock:
            self._user = None
            self._access_token = None
            self._refresh_token = None
