"""HTTP client for the marketplace API with automatic, single-flighted token refresh."""
import logging
import threading
from typing import Any

import httpx

from app.services.single_flight import SingleFlight

logger = logging.getLogger(__name__)

REFRESH_KEY = "refresh"


class ReauthenticationRequired(Exception):
    """Stored credentials were rejected; the user has to log in again."""

    def __init__(self, message: str = "Re-authentication required", code: str | None = None):
        super().__init__(message)
        self.code = code


class RefreshTimeout(Exception):
    """The token refresh did not settle in time; credentials are kept for a later retry."""


class MarketplaceClient:
    """Attaches the access token to each call and recovers once from a 401.

    Concurrent calls that all hit an expired access token share one refresh
    round-trip; the refresh slot is scoped to this client instance.
    """

    def __init__(
        self,
        base_url: str = "",
        http: httpx.Client | None = None,
        timeout: float = 10.0,
        api_prefix: str = "/api",
    ):
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout)
        self.timeout = timeout
        self.api_prefix = api_prefix
        self.access_token: str | None = None
        self.refresh_token: str | None = None
        self.session_id: str | None = None
        self._credentials_lock = threading.Lock()
        self._refresh_flight = SingleFlight()

    def _url(self, path: str) -> str:
        return f"{self.api_prefix}{path}"

    # Credentials

    def set_credentials(self, payload: dict[str, Any]) -> None:
        with self._credentials_lock:
            self.access_token = payload["access_token"]
            self.refresh_token = payload["refresh_token"]
            self.session_id = payload.get("session_id", self.session_id)

    def clear_credentials(self) -> None:
        with self._credentials_lock:
            self.access_token = None
            self.refresh_token = None
            self.session_id = None

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    # Auth flows

    def register(self, name: str, email: str, password: str, role: str = "customer") -> dict[str, Any]:
        response = self.http.post(
            self._url("/auth/register"),
            json={"name": name, "email": email, "password": password, "role": role},
        )
        response.raise_for_status()
        data = response.json()
        self.set_credentials(data)
        return data

    def login(self, email: str, password: str, device_label: str | None = None) -> dict[str, Any]:
        response = self.http.post(
            self._url("/auth/login"),
            json={"email": email, "password": password, "device_label": device_label},
        )
        if response.status_code == 401:
            raise ReauthenticationRequired("Incorrect email or password")
        response.raise_for_status()
        data = response.json()
        self.set_credentials(data)
        return data

    def logout(self) -> None:
        try:
            self.request("POST", "/auth/logout")
        except ReauthenticationRequired:
            pass
        finally:
            self.clear_credentials()

    def refresh(self, stale_access_token: str | None = None) -> None:
        """Exchange the refresh token, joining an exchange already in flight.

        If ``stale_access_token`` is given and the stored access token has
        already moved past it, another caller refreshed in the meantime and no
        request is made.
        """
        try:
            self._refresh_flight.do(
                REFRESH_KEY,
                lambda: self._exchange_refresh_token(stale_access_token),
                timeout=self.timeout,
            )
        except (TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("Token refresh timed out")
            raise RefreshTimeout("Timed out refreshing the access token") from exc

    def _exchange_refresh_token(self, stale_access_token: str | None) -> None:
        current = self.access_token
        if stale_access_token is not None and current is not None and current != stale_access_token:
            return

        refresh_token = self.refresh_token
        if not refresh_token:
            self.clear_credentials()
            raise ReauthenticationRequired("No refresh token available")

        response = self.http.post(
            self._url("/auth/refresh"),
            json={"refresh_token": refresh_token},
        )
        if response.status_code in (400, 401):
            code = _error_code(response)
            logger.info(f"Refresh rejected ({code}); clearing credentials")
            self.clear_credentials()
            raise ReauthenticationRequired("Session ended, please log in again", code=code)
        # Transient failures (e.g. 503) keep the credentials for a later retry
        response.raise_for_status()
        self.set_credentials(response.json())

    # Requests

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        sent_token = self.access_token
        response = self._send(method, path, sent_token, **kwargs)
        if response.status_code != 401:
            return response

        if not self.refresh_token:
            self.clear_credentials()
            raise ReauthenticationRequired()

        self.refresh(stale_access_token=sent_token)

        response = self._send(method, path, self.access_token, **kwargs)
        if response.status_code == 401:
            self.clear_credentials()
            raise ReauthenticationRequired(code=_error_code(response))
        return response

    def _send(self, method: str, path: str, access_token: str | None, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return self.http.request(method, self._url(path), headers=headers, **kwargs)

    def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("POST", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("DELETE", path, **kwargs)

    def close(self) -> None:
        self.http.close()


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("code")
    return None
