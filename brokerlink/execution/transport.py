"""
HTTP transport shared by all REST adapters.

RestTransport builds authenticated requests, executes them on a
``requests.Session``, classifies failures into the BrokerError hierarchy
and unwraps ``{status, data}`` envelopes. When a TokenHolder with a
refresher is attached, a 401 triggers exactly one token refresh and one
retry.

Classes:
    NoAuth: No auth header
    HeaderPairAuth: Static header pair (API key + secret)
    BearerAuth: ``Authorization: Bearer <token>``
    CompositeTokenAuth: ``Authorization: token <api_key>:<token>``
    TokenHolder: Lock-protected access token with single-flight refresh
    RestTransport: Request execution and error classification
"""

import threading
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from brokerlink.execution.exceptions import (
    AuthenticationError,
    BrokerError,
    BrokerProtocolError,
    TransientNetworkError,
)
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)

AUTH_FAILURE_CODES = (401, 403)


class NoAuth:
    """Sends no auth header."""

    def apply(self, headers: Dict[str, str], token: Optional[str]) -> None:
        return None


class HeaderPairAuth(NoAuth):
    """
    Static credential headers sent on every request.

    Example:
        >>> HeaderPairAuth({"APCA-API-KEY-ID": key, "APCA-API-SECRET-KEY": secret})
    """

    def __init__(self, headers: Mapping[str, Optional[str]]):
        self.headers = {name: value for name, value in headers.items() if value}

    def apply(self, headers: Dict[str, str], token: Optional[str]) -> None:
        headers.update(self.headers)


class BearerAuth(NoAuth):
    """OAuth-style bearer token; no header until a token exists."""

    def apply(self, headers: Dict[str, str], token: Optional[str]) -> None:
        if token:
            headers["Authorization"] = f"Bearer {token}"


class CompositeTokenAuth(NoAuth):
    """Kite Connect ``token api_key:access_token`` scheme."""

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def apply(self, headers: Dict[str, str], token: Optional[str]) -> None:
        if token:
            headers["Authorization"] = f"token {self.api_key}:{token}"


class TokenHolder:
    """
    Access token owned by one adapter instance.

    ``refresh`` is single-flight: it runs under a lock, and a caller whose
    stale token was already replaced by a concurrent refresh gets the new
    token back without calling the refresher again.

    Attributes:
        refresher: Callable returning a fresh access token, or None when the
            connection has no refresh path
    """

    def __init__(self, token: Optional[str] = None, refresher: Optional[Callable[[], str]] = None):
        self._token = token
        self.refresher = refresher
        self._lock = threading.Lock()
        self.refresh_count = 0

    @property
    def token(self) -> Optional[str]:
        with self._lock:
            return self._token

    @property
    def can_refresh(self) -> bool:
        return self.refresher is not None

    def refresh(self, stale_token: Optional[str]) -> str:
        """
        Replace ``stale_token`` with a fresh one.

        Args:
            stale_token: The token the caller's failed request carried

        Returns:
            The current token after refresh
        """
        with self._lock:
            if self._token is not None and self._token != stale_token:
                return self._token

            self._token = self.refresher()
            self.refresh_count += 1
            return self._token


class RestTransport:
    """
    Executes requests for one adapter instance.

    Attributes:
        broker: Provider name used in errors and logs
        base_url: Host (and path prefix) all request paths are joined to
        auth: Auth strategy applied to every request
        tokens: Token holder (None for static-credential providers)
        session: requests.Session (injected in tests)
        timeout: Request timeout in seconds (None = transport default)
        envelope: Unwrap ``{status, data}`` responses by default
    """

    def __init__(
        self,
        broker: str,
        base_url: str,
        auth: Optional[NoAuth] = None,
        tokens: Optional[TokenHolder] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        envelope: bool = False,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.broker = broker
        self.base_url = base_url.rstrip("/")
        self.auth = auth or NoAuth()
        self.tokens = tokens
        self.session = session or requests.Session()
        self.timeout = timeout
        self.envelope = envelope
        self.headers = dict(headers or {"Accept": "application/json"})

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        envelope: Optional[bool] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a request and return the decoded payload.

        Args:
            method: HTTP method
            path: Path relative to base_url (or an absolute URL)
            envelope: Override the transport's envelope setting
            **kwargs: ``params``, ``json``, ``data`` or ``headers``

        Returns:
            Decoded JSON (envelope ``data`` when unwrapping), response text
            for non-JSON bodies, or None for empty bodies

        Raises:
            AuthenticationError: 401/403 with no refresh path left
            BrokerProtocolError: Any other non-2xx, or an error envelope
            TransientNetworkError: Connection failure or timeout
        """
        response = self.send(method, path, **kwargs)
        payload = self.decode(response)

        if self.envelope if envelope is None else envelope:
            payload = self.unwrap(payload, response.status_code)
        return payload

    def send(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        data: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> requests.Response:
        """
        Execute a request and return the raw successful response.

        A 401 is retried once after a token refresh when the holder has a
        refresher; a second 401 raises AuthenticationError.
        """
        token = self.tokens.token if self.tokens is not None else None
        response = self._execute(method, path, token, params, json, data, headers)

        if response.status_code == 401 and self.tokens is not None and self.tokens.can_refresh:
            logger.info(f"{self.broker} rejected access token, refreshing")
            token = self._refresh(token)
            response = self._execute(method, path, token, params, json, data, headers)

        self.raise_for_status(response)
        return response

    def _refresh(self, stale_token: Optional[str]) -> str:
        try:
            return self.tokens.refresh(stale_token)
        except BrokerError as e:
            logger.error(f"{self.broker} token refresh failed: {e}")
            if isinstance(e, AuthenticationError):
                raise
            raise AuthenticationError(self.broker, getattr(e, "status_code", None), f"Token refresh failed: {e}") from e

    def _execute(
        self,
        method: str,
        path: str,
        token: Optional[str],
        params: Optional[Mapping[str, Any]],
        json: Any,
        data: Any,
        headers: Optional[Mapping[str, str]],
    ) -> requests.Response:
        request_headers = dict(self.headers)
        self.auth.apply(request_headers, token)
        if headers:
            request_headers.update(headers)

        try:
            response = self.session.request(
                method,
                self.url(path),
                params=params,
                json=json,
                data=data,
                headers=request_headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.error(f"{self.broker} {method} {path} failed: {e}")
            raise TransientNetworkError(self.broker, str(e)) from e
        except requests.RequestException as e:
            logger.error(f"{self.broker} {method} {path} failed: {e}")
            raise BrokerError(f"{self.broker} request error: {e}") from e

        logger.debug(f"{self.broker} {method} {path} -> {response.status_code}")
        return response

    def raise_for_status(self, response: requests.Response) -> None:
        """Map a non-2xx response to the error hierarchy."""
        status = response.status_code
        if 200 <= status < 300:
            return

        body = response.text
        if status in AUTH_FAILURE_CODES:
            raise AuthenticationError(self.broker, status, body)
        raise BrokerProtocolError(self.broker, status, body)

    @staticmethod
    def decode(response: requests.Response) -> Any:
        """JSON body, falling back to text; None for an empty body."""
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def unwrap(self, payload: Any, status_code: Optional[int] = None) -> Any:
        """
        Unwrap a ``{status, data}`` envelope.

        Raises:
            BrokerProtocolError: If the envelope status is not 'success'
        """
        if not isinstance(payload, dict) or "status" not in payload:
            return payload

        if str(payload["status"]).lower() != "success":
            raise BrokerProtocolError(self.broker, status_code, envelope_message(payload))
        return payload.get("data")


def envelope_message(payload: Mapping[str, Any]) -> str:
    """Best-effort error message from an error envelope."""
    if payload.get("message"):
        return str(payload["message"])

    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict):
            return str(first.get("message") or first)
        return str(first)

    for key in ("remarks", "errorMessage", "error"):
        if payload.get(key):
            return str(payload[key])
    return str(payload)
