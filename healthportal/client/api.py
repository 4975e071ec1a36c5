"""HTTP wrapper around the auth API for Python clients and scripts.

Mirrors the SPA's behavior: successful login, registration and refresh
populate the session; logout and any 401 from the backend clear it.

Example:
    >>> session = SessionContext()
    >>> client = AuthClient(requests.Session(), session, base_url="http://localhost:8000")
    >>> client.login("patient@demo.com", "demo123")
    >>> client.request("GET", "/auth/me").json()["data"]["user"]["role"]
    'patient'
"""
from typing import Any, Dict, Optional

import requests

from healthportal.client.session import SessionContext
from healthportal.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30


class ApiError(Exception):
    """Non-2xx response, carrying the envelope's message and field errors."""

    def __init__(self, status_code: int, message: str, errors: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self.message = message
        self.errors = errors or {}
        super().__init__(f"{status_code}: {message}")


class AuthClient:
    """Calls the auth endpoints and keeps ``session`` in sync.

    Args:
        http: ``requests.Session`` or anything with the same ``request`` method
            (a FastAPI ``TestClient`` works)
        session: Shared session context
        base_url: Server origin, e.g. ``http://localhost:8000``
        api_prefix: API mount point
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        http: requests.Session,
        session: SessionContext,
        base_url: str = "",
        api_prefix: str = "/api",
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.http = http
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}{path}"

    def _send(self, method: str, path: str, json: Optional[dict] = None, headers: Optional[dict] = None):
        return self.http.request(method, self._url(path), json=json, headers=headers, timeout=self.timeout)

    def _data(self, response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            if response.status_code == 401:
                self.session.clear()
            raise ApiError(
                response.status_code,
                body.get("message", "Request failed"),
                body.get("errors"),
            )
        return body.get("data") or {}

    # -----------------
    # PUBLIC ENDPOINTS
    # -----------------

    def register(self, **fields) -> Dict[str, Any]:
        """Register and sign in. Field names are the API's camelCase keys."""
        data = self._data(self._send("POST", "/auth/register", json=fields))
        self.session.apply_login(data)
        return data["user"]

    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._data(self._send("POST", "/auth/login", json={"email": email, "password": password}))
        self.session.apply_login(data)
        logger.info("Signed in", extra={"user_id": data["user"].get("id")})
        return data["user"]

    def refresh(self) -> None:
        """Rotate the token pair using the stored refresh token.

        Raises:
            ApiError: No refresh token held, or the server rejected it (the
                session is cleared on 401)
        """
        with self.session.transaction():
            refresh_token = self.session.refresh_token
            if not refresh_token:
                raise ApiError(400, "Refresh token required")
            data = self._data(self._send("POST", "/auth/refresh", json={"refreshToken": refresh_token}))
            self.session.apply_tokens(data)

    def logout(self) -> None:
        """Tell the server, then drop local state whatever the outcome."""
        token = self.session.access_token
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            self._send("POST", "/auth/logout", headers=headers)
        except requests.RequestException as e:
            logger.warning(f"Logout request failed: {e}")
        finally:
            self.session.clear()

    def request_password_reset(self, email: str) -> str:
        response = self._send("POST", "/auth/reset-password", json={"email": email})
        self._data(response)
        return response.json()["message"]

    def confirm_password_reset(self, token: str, password: str) -> None:
        self._data(self._send("POST", "/auth/reset-password/confirm", json={"token": token, "password": password}))

    def verify_email(self, token: str) -> None:
        self._data(self._send("POST", "/auth/verify-email", json={"token": token}))

    def fetch_routes(self) -> Dict[str, Any]:
        """Published role allow-lists, for building a ``RoleGatedRouter``."""
        return self._data(self._send("GET", "/auth/routes"))

    # -----------------
    # AUTHENTICATED CALLS
    # -----------------

    def request(self, method: str, path: str, json: Optional[dict] = None):
        """Call an API path with the stored access token attached.

        Returns the raw response for 2xx; raises ``ApiError`` otherwise.
        """
        token = self.session.access_token
        headers = {"Authorization": f"Bearer {token}"} if token else None
        response = self._send(method, path, json=json, headers=headers)
        self._data(response)
        return response

    def me(self) -> Dict[str, Any]:
        user = self.request("GET", "/auth/me").json()["data"]["user"]
        self.session.set_user(user)
        return user
