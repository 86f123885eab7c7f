"""Low-level HTTP client for the OneLogin v2 API.

Handles authentication, token caching, retries and JSON encoding.
"""
from __future__ import annotations
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, FrozenSet, Optional
from urllib.parse import urlencode

import requests

from .exceptions import (
    AuthenticationError,
    HTTPStatusError,
    NotFoundError,
    OneLoginError,
    RequestCancelledError,
    ResponseDecodeError,
    SerializationError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0

METHOD_GET = "GET"
METHOD_POST = "POST"
METHOD_PUT = "PUT"
METHOD_DELETE = "DELETE"

PATH_APPS = "/api/2/apps"
PATH_ROLES = "/api/2/roles"
PATH_USERS = "/api/2/users"
PATH_MAPPINGS = "/api/2/mappings"
PATH_MAPPINGS_SORT = "/api/2/mappings/sort"
PATH_CONNECTORS = "/api/2/connectors"
PATH_TOKEN = "/auth/oauth2/v2/token"

_EPOCH = datetime.fromtimestamp(0, timezone.utc)


class QueryParams(dict):
    """Insertion-ordered query parameters that render to an encoded query string."""

    def add(self, key: str, value: Any) -> None:
        self[key] = value

    def to_query_string(self) -> str:
        if not self:
            return ""
        return "?" + urlencode([(key, _format_query_value(value)) for key, value in self.items()])


def _format_query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour for a single request.

    The wait before retry ``i`` (0-based) is
    ``backoff_base * 2 ** (backoff_exponent_base * i)``: an exponent base of 0
    waits ``backoff_base`` every time, 1 doubles the wait on every retry.

    Attributes:
        retry_count: Number of retries after the first attempt (0 = no retries)
        retriable_status_codes: Status codes that trigger a retry
        backoff_base: Base wait in seconds
        backoff_exponent_base: Multiplier applied to the retry index in the exponent
    """
    retry_count: int = 0
    retriable_status_codes: FrozenSet[int] = frozenset()
    backoff_base: float = 0.0
    backoff_exponent_base: int = 0

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        if self.backoff_base < 0:
            raise ValueError("backoff_base must be >= 0")
        object.__setattr__(self, "retriable_status_codes", frozenset(self.retriable_status_codes))

    def is_retriable(self, status_code: int) -> bool:
        return status_code in self.retriable_status_codes

    def backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** (self.backoff_exponent_base * attempt))


NO_RETRY = RetryPolicy()


@dataclass
class RequestSpec:
    """Description of one API call.

    Attributes:
        method: HTTP method
        path: API path, e.g. ``/api/2/mappings``
        query_params: Query parameters appended to the URL
        body: JSON-serializable payload (None sends no body)
        response_model: Callable applied to the decoded JSON response;
            when None the response body is not decoded
        retry: Retry policy for this call
        cancel: Event that aborts a pending retry wait when set
    """
    method: str
    path: str
    query_params: QueryParams = field(default_factory=QueryParams)
    body: Any = None
    response_model: Optional[Callable[[Any], Any]] = None
    retry: RetryPolicy = NO_RETRY
    cancel: Optional[threading.Event] = None

    def __post_init__(self) -> None:
        if not isinstance(self.query_params, QueryParams):
            self.query_params = QueryParams(self.query_params or {})


@dataclass
class BearerToken:
    """Cached access token; the zero expiry forces a refresh on first use."""
    value: str = ""
    expires_at: datetime = _EPOCH

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class TokenCache:
    """Client-credentials token holder with transparent refresh.

    A failed refresh clears the cached token so the next call retries cleanly.
    """

    def __init__(self, subdomain: str, client_id: str, client_secret: str, timeout: float = DEFAULT_TIMEOUT):
        self.subdomain = subdomain
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._token = BearerToken()
        self._lock = threading.Lock()

    @property
    def token_url(self) -> str:
        return f"https://{self.subdomain}.onelogin.com{PATH_TOKEN}"

    @property
    def expires_at(self) -> datetime:
        return self._token.expires_at

    def get_token(self, now: Optional[datetime] = None) -> str:
        """Return a valid access token, exchanging credentials if expired.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Bearer token value

        Raises:
            AuthenticationError: If the token endpoint rejects the credentials
            requests.RequestException: On transport failure
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            if not self._token.is_expired(now):
                return self._token.value
            try:
                self._token = self._exchange(now)
            except Exception:
                self._token = BearerToken()
                raise
            logger.debug(f"Refreshed OneLogin token, expires at {self._token.expires_at.isoformat()}")
            return self._token.value

    def invalidate(self) -> None:
        with self._lock:
            self._token = BearerToken()

    def _exchange(self, now: datetime) -> BearerToken:
        resp = requests.post(
            self.token_url,
            json={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        if resp.status_code != 200:
            raise AuthenticationError(resp.status_code, self.token_url)
        try:
            payload = resp.json()
            access_token = payload["access_token"]
            expires_in = int(payload.get("expires_in") or 0)
        except (ValueError, KeyError, TypeError) as e:
            raise ResponseDecodeError(f"invalid token response from {self.token_url}: {e}") from e
        issued_at = _parse_timestamp(payload.get("created_at"), default=now)
        return BearerToken(value=access_token, expires_at=issued_at + timedelta(seconds=expires_in))


def _parse_timestamp(value: Any, default: datetime) -> datetime:
    if not value:
        return default
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class OneLoginClient:
    """HTTP client for the OneLogin v2 API with automatic token management.

    Features:
    - Cached client-credentials token, refreshed when expired
    - Per-request retry policy with cancellable exponential backoff
    - Typed errors for 404 and other non-2xx responses

    Usage:
        client = OneLoginClient.connect("acme", "client-id", "client-secret")
        rules = client.get("/api/2/mappings", response_model=list)
    """

    def __init__(
        self,
        subdomain: str,
        client_id: str,
        client_secret: str,
        timeout: float = DEFAULT_TIMEOUT,
        token_cache: Optional[TokenCache] = None,
    ):
        """Initialize OneLogin client.

        Args:
            subdomain: OneLogin instance subdomain (``acme`` for acme.onelogin.com)
            client_id: API credential client id
            client_secret: API credential client secret
            timeout: Per-request deadline in seconds
            token_cache: Shared token cache (created when omitted)
        """
        self.subdomain = subdomain
        self.base_url = f"https://{subdomain}.onelogin.com"
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.token_cache = token_cache or TokenCache(subdomain, client_id, client_secret, self.timeout)

    @classmethod
    def connect(cls, subdomain: str, client_id: str, client_secret: str, timeout: float = DEFAULT_TIMEOUT) -> "OneLoginClient":
        """Create a client and authenticate once so bad credentials fail fast."""
        client = cls(subdomain, client_id, client_secret, timeout)
        client.token_cache.get_token()
        return client

    @classmethod
    def from_settings(cls, config) -> "OneLoginClient":
        return cls.connect(
            config.onelogin_subdomain,
            config.onelogin_client_id,
            config.onelogin_client_secret,
            config.request_timeout,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Request execution
    # ─────────────────────────────────────────────────────────────────────
    def execute(self, spec: RequestSpec) -> Any:
        """Execute a request, retrying per ``spec.retry``.

        Returns:
            ``spec.response_model`` applied to the decoded JSON body, or None
            when no response model was given

        Raises:
            SerializationError: If the body is not JSON serializable
            RequestCancelledError: If ``spec.cancel`` fires during a retry wait
            NotFoundError: On HTTP 404
            HTTPStatusError: On any other non-2xx response
            ResponseDecodeError: If the body does not decode into the model
        """
        logger.info(f"executing request method={spec.method} path={spec.path}")
        try:
            result = self._execute(spec)
        except (OneLoginError, requests.RequestException) as e:
            logger.error(f"request failed method={spec.method} path={spec.path} error={e}")
            raise
        logger.info(f"request succeeded method={spec.method} path={spec.path}")
        return result

    def _execute(self, spec: RequestSpec) -> Any:
        url, data, headers = self._prepare(spec)
        policy = spec.retry
        waiter = spec.cancel or threading.Event()

        for attempt in range(policy.retry_count + 1):
            self._raise_if_cancelled(spec)
            resp = self._transmit(spec.method, url, data, self._authorize(headers))

            if attempt < policy.retry_count and policy.is_retriable(resp.status_code):
                wait_s = policy.backoff(attempt)
                if waiter.wait(wait_s):
                    raise RequestCancelledError(f"request cancelled while waiting to retry {spec.method} {spec.path}")
                logger.info(
                    f"retrying request method={spec.method} path={spec.path} "
                    f"resp_code={resp.status_code} retry_num={attempt + 1} retry_wait_s={wait_s}"
                )
                continue

            if resp.status_code == 404:
                raise NotFoundError(spec.path, resp.text)
            if resp.status_code // 100 != 2:
                raise HTTPStatusError(resp.status_code, resp.text, spec.path)
            return decode_response(resp, spec.response_model, spec.path)

        return None

    def send(self, spec: RequestSpec) -> requests.Response:
        """Send a single request with no retry loop and no status handling."""
        self._raise_if_cancelled(spec)
        url, data, headers = self._prepare(spec)
        return self._transmit(spec.method, url, data, self._authorize(headers))

    def url_for(self, path: str, query_params: Optional[QueryParams] = None) -> str:
        url = f"{self.base_url}{path}"
        if query_params:
            url += query_params.to_query_string()
        return url

    def _prepare(self, spec: RequestSpec) -> tuple[str, Optional[bytes], Dict[str, str]]:
        data = None
        headers: Dict[str, str] = {}
        if spec.body is not None:
            try:
                data = json.dumps(spec.body).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise SerializationError(f"cannot encode body for {spec.method} {spec.path}: {e}") from e
            headers["Content-Type"] = "application/json"
        return self.url_for(spec.path, spec.query_params), data, headers

    def _authorize(self, headers: Dict[str, str]) -> Dict[str, str]:
        """Copy of ``headers`` carrying the current bearer token, resolved on every attempt."""
        return {**headers, "Authorization": f"Bearer {self.token_cache.get_token()}"}

    def _transmit(self, method: str, url: str, data: Optional[bytes], headers: Dict[str, str]) -> requests.Response:
        return requests.request(method, url, data=data, headers=headers, timeout=self.timeout)

    @staticmethod
    def _raise_if_cancelled(spec: RequestSpec) -> None:
        if spec.cancel is not None and spec.cancel.is_set():
            raise RequestCancelledError(f"request cancelled: {spec.method} {spec.path}")

    # ─────────────────────────────────────────────────────────────────────
    # Convenience wrappers
    # ─────────────────────────────────────────────────────────────────────
    def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return self.execute(RequestSpec(METHOD_GET, path, QueryParams(params or {}), **kwargs))

    def post(self, path: str, body: Any = None, **kwargs) -> Any:
        return self.execute(RequestSpec(METHOD_POST, path, body=body, **kwargs))

    def put(self, path: str, body: Any = None, **kwargs) -> Any:
        return self.execute(RequestSpec(METHOD_PUT, path, body=body, **kwargs))

    def delete(self, path: str, **kwargs) -> Any:
        return self.execute(RequestSpec(METHOD_DELETE, path, **kwargs))


def decode_response(resp: requests.Response, response_model: Optional[Callable[[Any], Any]], endpoint: str) -> Any:
    """Decode a JSON response body through ``response_model``."""
    if response_model is None:
        return None
    try:
        payload = resp.json()
    except ValueError as e:
        raise ResponseDecodeError(f"invalid JSON from {endpoint}: {e}") from e
    try:
        return response_model(payload)
    except (TypeError, KeyError, ValueError, AttributeError) as e:
        raise ResponseDecodeError(f"unexpected response shape from {endpoint}: {e}") from e
