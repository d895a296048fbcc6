"""
client/session.py -- Client-side authentication state for CropCase.

AuthSession drives the /api/v1/auth endpoints from Python and holds the
resulting session in one place: the current user, the access token used for
authenticated calls, and the refresh token used to renew it. Construct one
per application (or per user in a multi-user tool), and close() it on
shutdown.

    with AuthSession("https://cropcase.example.in/api/v1") as session:
        session.login("asha@example.in", "s3cret!")
        cases = session.request("GET", "/cases/mine")

Failure policy:
  - Every failed action records a human-readable message in state.error and
    raises AuthClientError with the server's error code and HTTP status.
  - A failed login, signup or refresh leaves the previous tokens untouched.
  - logout() always clears local state, even when the server is unreachable.
  - Network failures surface as code "network_error" with a generic message;
    transport details go to the log, not to state.error.

Concurrency: refresh_auth() is de-duplicated. While one refresh is in flight,
other callers wait for it and share its outcome instead of sending their own
request -- a second request would present a refresh token the first one has
already rotated away.

Layer rule: client/ talks to the service over HTTP only. No imports from
api/, auth/, plans/, or core/.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

import requests

logger = logging.getLogger("cropcase.client")

NETWORK_ERROR_MESSAGE = "Could not reach the server. Check your connection and try again."
GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


class AuthClientError(Exception):
    """A client-side auth action failed.

    code is the server's machine-readable error code ("invalid_credentials",
    "conflict", ...) or "network_error". status is the HTTP status, or None
    when no response was received.
    """

    def __init__(self, message: str, code: str = "error", status: Optional[int] = None) -> None:
        self.message = message
        self.code = code
        self.status = status
        super().__init__(message)


@dataclass
class AuthState:
    user: Optional[dict] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    is_authenticated: bool = False
    is_loading: bool = False
    error: Optional[str] = None


class AuthSession:
    """Explicit client session object. See module docstring for the failure policy."""

    def __init__(self, base_url: str, http: Optional[Any] = None, timeout: float = 10.0) -> None:
        """
        Args:
            base_url: API root including the version prefix, e.g.
                      "http://localhost:8000/api/v1".
            http:     Object with a requests-compatible request() method. A
                      private requests.Session is created (and closed by
                      close()) when omitted.
            timeout:  Per-request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self._owns_http = http is None
        if http is None:
            http = requests.Session()
            http.max_redirects = 3
        self._http = http
        self._timeout = timeout
        self._state = AuthState()
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._refresh_future: Optional[Future] = None
        self._loading = 0  # nested actions in flight

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        """A snapshot copy of the current state."""
        with self._lock:
            return replace(self._state)

    @property
    def user(self) -> Optional[dict]:
        return self.state.user

    @property
    def is_authenticated(self) -> bool:
        return self.state.is_authenticated

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    def get_auth_headers(self) -> dict[str, str]:
        with self._lock:
            token = self._state.access_token
        return {"Authorization": f"Bearer {token}"} if token else {}

    def clear_error(self) -> None:
        with self._lock:
            self._state.error = None

    def set_user(self, user: Optional[dict]) -> None:
        with self._lock:
            self._state.user = user

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> dict:
        """Log in and return the user. Raises AuthClientError on failure."""
        payload = self._guarded(lambda: self._call("POST", "/auth/login", {"email": email, "password": password}))
        self._apply_session(payload)
        return payload["user"]

    def signup(self, email: str, password: str, name: Optional[str] = None) -> dict:
        """Create an account, start its session and return the user."""
        body: dict[str, Any] = {"email": email, "password": password}
        if name is not None:
            body["name"] = name
        payload = self._guarded(lambda: self._call("POST", "/auth/signup", body))
        self._apply_session(payload)
        return payload["user"]

    def refresh_auth(self) -> bool:
        """Exchange the held refresh token for a new pair.

        Returns True on success and False when there is no refresh token to
        use (the session is then marked unauthenticated). Concurrent callers
        share one in-flight request and all see its outcome, including its
        AuthClientError.
        """
        with self._refresh_lock:
            future = self._refresh_future
            leader = future is None
            if leader:
                future = Future()
                self._refresh_future = future
        if not leader:
            return future.result()

        try:
            result = self._refresh_once()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._refresh_lock:
                self._refresh_future = None

    def restore(self, refresh_token: str) -> bool:
        """Rebuild a session from a persisted refresh token (e.g. after a restart)."""
        with self._lock:
            self._state.refresh_token = refresh_token
        return self.refresh_auth()

    def logout(self) -> None:
        """Revoke the refresh token server-side and clear local state.

        Local state is cleared no matter what the server says: a user who
        asked to log out must end up logged out on this device.
        """
        with self._lock:
            token = self._state.refresh_token
        self._begin_loading()
        try:
            if token:
                self._call("POST", "/auth/logout", {"refreshToken": token})
        except AuthClientError as exc:
            logger.info("Server-side logout failed (%s); clearing local session", exc.code)
        finally:
            with self._lock:
                self._loading -= 1
                self._state = AuthState(is_loading=self._loading > 0)

    def update_profile(self, **fields: Any) -> dict:
        """PUT /auth/me with the given fields (name, avatar). Returns the updated user."""
        payload = self._guarded(lambda: self.request("PUT", "/auth/me", json=fields))
        self.set_user(payload["user"])
        return payload["user"]

    def request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        """Authenticated call. On a 401 the session refreshes once and retries."""
        try:
            return self._call(method, path, json, auth=True)
        except AuthClientError as exc:
            if exc.status != 401 or self.state.refresh_token is None:
                raise
        logger.info("Access token rejected on %s %s; refreshing", method, path)
        self.refresh_auth()
        return self._call(method, path, json, auth=True)

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "AuthSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _refresh_once(self) -> bool:
        with self._lock:
            token = self._state.refresh_token
            if not token:
                self._state.is_authenticated = False
                return False
        payload = self._guarded(lambda: self._call("POST", "/auth/refresh", {"refreshToken": token}))
        self._apply_session(payload)
        return True

    def _guarded(self, action: Callable[[], Any]) -> Any:
        """Run action with is_loading set; record the error message on failure.

        Calls nest (update_profile -> request -> refresh_auth), so is_loading
        stays set until the outermost action finishes.
        """
        self._begin_loading()
        try:
            return action()
        except AuthClientError as exc:
            with self._lock:
                self._state.error = exc.message
            raise
        finally:
            self._end_loading()

    def _begin_loading(self) -> None:
        with self._lock:
            self._loading += 1
            self._state.is_loading = True

    def _end_loading(self) -> None:
        with self._lock:
            self._loading -= 1
            self._state.is_loading = self._loading > 0

    def _apply_session(self, payload: dict) -> None:
        with self._lock:
            self._state = AuthState(
                user=payload["user"],
                access_token=payload["accessToken"],
                refresh_token=payload["refreshToken"],
                is_authenticated=True,
                is_loading=self._loading > 0,
            )

    def _call(self, method: str, path: str, body: Optional[dict] = None, auth: bool = False) -> Any:
        headers = self.get_auth_headers() if auth else {}
        try:
            resp = self._http.request(
                method,
                f"{self.base_url}{path}",
                json=body,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise AuthClientError(NETWORK_ERROR_MESSAGE, code="network_error") from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if resp.status_code >= 400:
            err = payload.get("error") if isinstance(payload, dict) else None
            if isinstance(err, dict) and err.get("message"):
                raise AuthClientError(err["message"], code=err.get("code", "error"), status=resp.status_code)
            raise AuthClientError(GENERIC_ERROR_MESSAGE, status=resp.status_code)
        return payload
