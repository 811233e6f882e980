"""
HTTP transport and middleware chain.

    ErrorEventMiddleware      emits auth/server/timeout/network events once per call
      └─ RetryMiddleware      retries transport failures with backoff
           └─ AuthMiddleware  injects the bearer token on every attempt
                └─ RequestsTransport

Every layer implements send(request) -> Response. A Response is returned
for any HTTP status; only a missing response raises (TransportError).
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from .errors import NetworkError, RequestTimeout, TransportError
from .events import ApiEvent, EventBus

logger = logging.getLogger(__name__)

# 401 on these paths is a failed login, not an expired session
AUTH_PATHS = ("/auth/login", "/auth/signup")


@dataclass
class Request:
    method: str
    path: str
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_auth_request(self) -> bool:
        return any(p in self.path for p in AUTH_PATHS)


@dataclass
class Response:
    status_code: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class Transport:
    """Anything that can turn a Request into a Response."""

    def send(self, request: Request) -> Response:
        raise NotImplementedError


class RequestsTransport(Transport):
    """Leaf transport backed by a requests.Session."""

    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def send(self, request: Request) -> Response:
        url = f"{self.base_url}/{request.path.lstrip('/')}"
        try:
            r = self.session.request(
                request.method,
                url,
                params=request.params,
                json=request.json,
                headers=request.headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise RequestTimeout(f"{request.method} {url} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise NetworkError(f"{request.method} {url} failed: {e}") from e

        try:
            data = r.json() if r.content else None
        except ValueError:
            data = r.text
        return Response(status_code=r.status_code, data=data, headers=dict(r.headers), url=url)


class Middleware(Transport):
    """A transport that wraps another transport."""

    def __init__(self, inner: Transport):
        self.inner = inner

    def send(self, request: Request) -> Response:
        return self.inner.send(request)


class AuthMiddleware(Middleware):
    """Adds `Authorization: Bearer <token>` from the token store."""

    def __init__(self, inner: Transport, token_store):
        super().__init__(inner)
        self.token_store = token_store

    def send(self, request: Request) -> Response:
        token = self.token_store.get()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        elif not request.is_auth_request:
            logger.warning(f"No auth token found for request: {request.path}")
        return self.inner.send(request)


class RetryMiddleware(Middleware):
    """
    Retries requests that got no response at all.

    Delay before retry n (0-based) is delay * backoff_factor ** n:
    1s -> 2s -> 4s with the defaults. HTTP error statuses pass straight through.
    """

    def __init__(
        self,
        inner: Transport,
        max_retries: int = 3,
        delay: float = 1.0,
        backoff_factor: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(inner)
        self.max_retries = max_retries
        self.delay = delay
        self.backoff_factor = backoff_factor
        self.sleep = sleep

    def send(self, request: Request) -> Response:
        attempt = 0
        while True:
            try:
                return self.inner.send(request)
            except TransportError as e:
                if attempt >= self.max_retries:
                    raise
                wait = self.delay * (self.backoff_factor ** attempt)
                logger.info(
                    f"API request failed ({e}), retrying in {wait:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries}): {request.method} {request.path}"
                )
                self.sleep(wait)
                attempt += 1


class ErrorEventMiddleware(Middleware):
    """Turns failures into bus events; clears credentials on 401."""

    def __init__(self, inner: Transport, bus: EventBus, token_store=None):
        super().__init__(inner)
        self.bus = bus
        self.token_store = token_store

    def send(self, request: Request) -> Response:
        try:
            response = self.inner.send(request)
        except RequestTimeout as e:
            logger.error(f"Request timeout: {request.path}")
            self.bus.emit(ApiEvent.TIMEOUT, url=request.path)
            self.bus.emit(ApiEvent.NETWORK_ERROR, message=str(e))
            raise
        except TransportError as e:
            logger.error(f"Network error: {e}")
            self.bus.emit(ApiEvent.NETWORK_ERROR, message=str(e))
            raise

        status = response.status_code
        if status == 401 and not request.is_auth_request:
            logger.warning("Unauthorized API request - clearing auth token")
            if self.token_store is not None:
                self.token_store.clear()
            self.bus.emit(ApiEvent.AUTH_REQUIRED, url=request.path)
        elif status >= 500:
            logger.error(f"Server error {status} on {request.path}: {response.data}")
            self.bus.emit(ApiEvent.SERVER_ERROR, message="Server error occurred", error=response.data)
        elif status == 404:
            logger.warning(f"Resource not found: {request.path}")
        return response


def build_transport(config, token_store, bus: EventBus, session: Optional[requests.Session] = None) -> Transport:
    """Assemble the standard chain from a ClientConfig."""
    leaf = RequestsTransport(config.api_base_url, timeout=config.timeout, session=session)
    chain = AuthMiddleware(leaf, token_store)
    chain = RetryMiddleware(
        chain,
        max_retries=config.max_retries,
        delay=config.retry_delay,
        backoff_factor=config.backoff_factor,
    )
    return ErrorEventMiddleware(chain, bus, token_store)
