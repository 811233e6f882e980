"""
Tests for the transport chain: auth header, retry with backoff,
error events, and the requests-backed leaf transport.
"""
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeTransport
from pkg.vanguard.config import ClientConfig
from pkg.vanguard.errors import NetworkError, RequestTimeout
from pkg.vanguard.events import ApiEvent, EventBus
from pkg.vanguard.storage import MemoryTokenStore
from pkg.vanguard.transport import (
    AuthMiddleware,
    ErrorEventMiddleware,
    Request,
    RequestsTransport,
    Response,
    RetryMiddleware,
    build_transport,
)


def recorder(bus):
    """Subscribe to every ApiEvent and collect (event, payload) pairs."""
    seen = []
    for event in ApiEvent:
        bus.subscribe(event, lambda _e=event, **payload: seen.append((_e, payload)))
    return seen


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# AuthMiddleware
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestAuthMiddleware:

    def test_adds_bearer_token(self):
        leaf = FakeTransport({("GET", "/tasks"): Response(200, [])})
        AuthMiddleware(leaf, MemoryTokenStore("abc")).send(Request("GET", "/tasks"))
        assert leaf.requests[0].headers["Authorization"] == "Bearer abc"

    def test_no_token_no_header(self):
        leaf = FakeTransport({("GET", "/tasks"): Response(200, [])})
        AuthMiddleware(leaf, MemoryTokenStore()).send(Request("GET", "/tasks"))
        assert "Authorization" not in leaf.requests[0].headers

    def test_token_read_on_every_call(self):
        store = MemoryTokenStore("old")
        leaf = FakeTransport({("GET", "/tasks"): Response(200, [])})
        chain = AuthMiddleware(leaf, store)
        chain.send(Request("GET", "/tasks"))
        store.set("new")
        chain.send(Request("GET", "/tasks"))
        assert leaf.requests[1].headers["Authorization"] == "Bearer new"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RetryMiddleware
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestRetryMiddleware:

    def setup_method(self):
        self.sleeps = []

    def chain(self, leaf, **kwargs):
        return RetryMiddleware(leaf, sleep=self.sleeps.append, **kwargs)

    def test_success_no_retry(self):
        leaf = FakeTransport({("GET", "/tasks"): Response(200, [])})
        assert self.chain(leaf).send(Request("GET", "/tasks")).status_code == 200
        assert len(leaf.requests) == 1
        assert self.sleeps == []

    def test_recovers_after_network_errors(self):
        leaf = FakeTransport({("GET", "/tasks"): [
            NetworkError("refused"),
            NetworkError("refused"),
            Response(200, [{"_id": "1"}]),
        ]})
        response = self.chain(leaf).send(Request("GET", "/tasks"))
        assert response.status_code == 200
        assert len(leaf.requests) == 3
        assert self.sleeps == [1.0, 2.0]

    def test_exponential_backoff_then_give_up(self):
        leaf = FakeTransport({("GET", "/tasks"): [RequestTimeout("slow")]})
        with pytest.raises(RequestTimeout):
            self.chain(leaf).send(Request("GET", "/tasks"))
        assert len(leaf.requests) == 4  # first try + 3 retries
        assert self.sleeps == [1.0, 2.0, 4.0]

    def test_http_errors_not_retried(self):
        leaf = FakeTransport({("GET", "/tasks"): Response(500, {"message": "boom"})})
        response = self.chain(leaf).send(Request("GET", "/tasks"))
        assert response.status_code == 500
        assert len(leaf.requests) == 1
        assert self.sleeps == []

    def test_custom_policy(self):
        leaf = FakeTransport({("GET", "/tasks"): [NetworkError("x")]})
        with pytest.raises(NetworkError):
            self.chain(leaf, max_retries=1, delay=0.5).send(Request("GET", "/tasks"))
        assert self.sleeps == [0.5]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ErrorEventMiddleware
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestErrorEventMiddleware:

    def setup_method(self):
        self.bus = EventBus()
        self.seen = recorder(self.bus)
        self.store = MemoryTokenStore("abc")

    def send(self, leaf, path="/tasks"):
        return ErrorEventMiddleware(leaf, self.bus, self.store).send(Request("GET", path))

    def test_ok_emits_nothing(self):
        self.send(FakeTransport({("GET", "/tasks"): Response(200, [])}))
        assert self.seen == []

    def test_401_clears_token_and_emits_auth_required(self):
        response = self.send(FakeTransport({("GET", "/tasks"): Response(401, {"message": "expired"})}))
        assert response.status_code == 401
        assert self.store.get() is None
        assert self.seen == [(ApiEvent.AUTH_REQUIRED, {"url": "/tasks"})]

    def test_401_on_login_is_exempt(self):
        leaf = FakeTransport({("GET", "/auth/login"): Response(401, {"message": "bad password"})})
        self.send(leaf, path="/auth/login")
        assert self.store.get() == "abc"
        assert self.seen == []

    def test_server_error_event(self):
        self.send(FakeTransport({("GET", "/tasks"): Response(503, {"message": "down"})}))
        assert self.seen == [
            (ApiEvent.SERVER_ERROR, {"message": "Server error occurred", "error": {"message": "down"}}),
        ]

    def test_404_emits_nothing(self):
        self.send(FakeTransport())
        assert self.seen == []

    def test_timeout_emits_timeout_and_network_error(self):
        with pytest.raises(RequestTimeout):
            self.send(FakeTransport({("GET", "/tasks"): RequestTimeout("slow")}))
        assert [e for e, _ in self.seen] == [ApiEvent.TIMEOUT, ApiEvent.NETWORK_ERROR]

    def test_network_error_event(self):
        with pytest.raises(NetworkError):
            self.send(FakeTransport({("GET", "/tasks"): NetworkError("refused")}))
        assert [e for e, _ in self.seen] == [ApiEvent.NETWORK_ERROR]

    def test_one_event_per_logical_request(self):
        leaf = FakeTransport({("GET", "/tasks"): [NetworkError("refused")]})
        chain = ErrorEventMiddleware(
            RetryMiddleware(leaf, sleep=lambda s: None), self.bus, self.store
        )
        with pytest.raises(NetworkError):
            chain.send(Request("GET", "/tasks"))
        assert len(leaf.requests) == 4
        assert [e for e, _ in self.seen] == [ApiEvent.NETWORK_ERROR]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RequestsTransport
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def fake_http_response(status=200, body=b'{"ok": true}', json_value=None, text=""):
    r = MagicMock()
    r.status_code = status
    r.content = body
    r.headers = {"Content-Type": "application/json"}
    r.text = text
    if json_value is None:
        r.json.side_effect = ValueError("not json")
    else:
        r.json.return_value = json_value
    return r


class TestRequestsTransport:

    def setup_method(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.transport = RequestsTransport("http://api.local/api/", timeout=5, session=self.session)

    def test_builds_url_and_passes_timeout(self):
        self.session.request.return_value = fake_http_response(json_value={"ok": True})
        response = self.transport.send(Request("GET", "/tasks", params={"archived": "false"}))
        self.session.request.assert_called_once_with(
            "GET",
            "http://api.local/api/tasks",
            params={"archived": "false"},
            json=None,
            headers={},
            timeout=5,
        )
        assert response.data == {"ok": True}
        assert response.status_code == 200

    def test_json_headers_on_session(self):
        assert self.session.headers["Content-Type"] == "application/json"

    def test_non_json_body_falls_back_to_text(self):
        self.session.request.return_value = fake_http_response(status=502, body=b"<html>", text="<html>")
        assert self.transport.send(Request("GET", "/tasks")).data == "<html>"

    def test_empty_body(self):
        self.session.request.return_value = fake_http_response(status=204, body=b"")
        assert self.transport.send(Request("DELETE", "/tasks/1")).data is None

    def test_timeout_maps_to_request_timeout(self):
        self.session.request.side_effect = requests.Timeout("slow")
        with pytest.raises(RequestTimeout):
            self.transport.send(Request("GET", "/tasks"))

    def test_connection_error_maps_to_network_error(self):
        self.session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(NetworkError):
            self.transport.send(Request("GET", "/tasks"))


def test_build_transport_chain_order():
    config = ClientConfig(api_base_url="http://api.local/api")
    chain = build_transport(config, MemoryTokenStore(), EventBus(), session=MagicMock(headers={}))
    assert isinstance(chain, ErrorEventMiddleware)
    assert isinstance(chain.inner, RetryMiddleware)
    assert isinstance(chain.inner.inner, AuthMiddleware)
    assert isinstance(chain.inner.inner.inner, RequestsTransport)
    assert chain.inner.max_retries == 3
