"""Tests for the streamable HTTP front end: routing, session start-up, errors.

Most tests run McpRouter against a fake transport and fake MCP server so
the routing decisions can be observed directly. TestRealTransport drives
the actual mcp transport end to end with JSON responses.
"""

import contextlib
import itertools
import time
from unittest.mock import AsyncMock, MagicMock

import anyio
import pytest
from mcp import types
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.testclient import TestClient

from gemini_mcp.mcp_server import create_server
from gemini_mcp.mcp_server._http import (
    RouteAction,
    classify_request,
    create_app,
    is_initialize_request,
)
from gemini_mcp.mcp_server._lifecycle import ShutdownController
from gemini_mcp.mcp_server._sessions import SessionRegistry

INIT_BODY = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": types.LATEST_PROTOCOL_VERSION,
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "0.0.1"},
    },
}
LIST_BODY = {"jsonrpc": "2.0", "id": 2, "method": "tools/list", "params": {}}
ACCEPT = {"accept": "application/json, text/event-stream"}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeTransport:
    """Records every request it is handed; echoes its session id back."""

    def __init__(self, mcp_session_id, is_json_response_enabled, *, confirm=True, fail=None):
        self.session_id = mcp_session_id
        self.json_response = is_json_response_enabled
        self.confirm = confirm
        self.fail = fail
        self.requests = []
        self.terminated = False
        self.closed = None

    @contextlib.asynccontextmanager
    async def connect(self):
        self.closed = anyio.Event()
        yield self, self

    async def handle_request(self, scope, receive, send):
        if self.fail is not None:
            raise self.fail
        body = await Request(scope, receive).body()
        self.requests.append((scope["method"], body))
        headers = {MCP_SESSION_ID_HEADER: self.session_id} if self.confirm else {}
        response = JSONResponse({"handled_by": self.session_id}, headers=headers)
        await response(scope, receive, send)

    async def terminate(self):
        self.terminated = True
        if self.closed is not None:
            self.closed.set()


class FakeServer:
    """Stands in for the low-level MCP server: runs until its transport closes."""

    def create_initialization_options(self):
        return None

    async def run(self, read_stream, write_stream, options, stateless=False):
        await read_stream.closed.wait()


class Harness:
    def __init__(self, **transport_kwargs):
        self.registry = SessionRegistry()
        self.lifecycle = ShutdownController(self.registry, exit_fn=lambda code: None)
        self.transports = []
        counter = itertools.count(1)

        def factory(**kwargs):
            transport = FakeTransport(**kwargs, **transport_kwargs)
            self.transports.append(transport)
            return transport

        self.app = create_app(
            FakeServer(),
            self.registry,
            self.lifecycle,
            transport_factory=factory,
            id_generator=lambda: f"sid-{next(counter)}",
        )


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def client(harness):
    with TestClient(harness.app) as test_client:
        yield test_client


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ---------------------------------------------------------------------------
# Pure routing decisions
# ---------------------------------------------------------------------------


class TestClassify:
    @pytest.mark.parametrize(
        "session_id,known,method,is_init,expected",
        [
            ("s1", True, "POST", False, RouteAction.CONTINUE),
            ("s1", True, "POST", True, RouteAction.CONTINUE),
            ("s1", True, "GET", False, RouteAction.CONTINUE),
            ("s1", True, "DELETE", False, RouteAction.CONTINUE),
            (None, False, "POST", True, RouteAction.BEGIN),
            ("stale", False, "POST", True, RouteAction.REJECT),
            ("stale", False, "POST", False, RouteAction.REJECT),
            (None, False, "POST", False, RouteAction.REJECT),
            (None, False, "GET", False, RouteAction.REJECT),
            (None, False, "DELETE", False, RouteAction.REJECT),
            (None, False, "GET", True, RouteAction.REJECT),
        ],
    )
    def test_truth_table(self, session_id, known, method, is_init, expected):
        assert classify_request(session_id, known, method, is_init) is expected


class TestIsInitializeRequest:
    def test_valid(self):
        assert is_initialize_request(INIT_BODY) is True

    def test_other_method(self):
        assert is_initialize_request(LIST_BODY) is False

    def test_missing_params(self):
        body = {"jsonrpc": "2.0", "id": 1, "method": "initialize"}
        assert is_initialize_request(body) is False

    def test_notification_is_not_a_request(self):
        body = {k: v for k, v in INIT_BODY.items() if k != "id"}
        assert is_initialize_request(body) is False

    @pytest.mark.parametrize("body", [None, "initialize", [INIT_BODY], 42])
    def test_non_object_bodies(self, body):
        assert is_initialize_request(body) is False


# ---------------------------------------------------------------------------
# Router behaviour
# ---------------------------------------------------------------------------


class TestBeginSession:
    def test_initialize_creates_session(self, harness, client):
        resp = client.post("/mcp", json=INIT_BODY, headers=ACCEPT)
        assert resp.status_code == 200
        assert resp.headers[MCP_SESSION_ID_HEADER] == "sid-1"
        assert harness.registry.lookup("sid-1") is harness.transports[0]
        assert harness.transports[0].requests[0][0] == "POST"

    def test_body_replayed_to_transport(self, harness, client):
        client.post("/mcp", json=INIT_BODY, headers=ACCEPT)
        (_, body), = harness.transports[0].requests
        assert b'"initialize"' in body

    def test_each_initialize_gets_fresh_session(self, harness, client):
        client.post("/mcp", json=INIT_BODY, headers=ACCEPT)
        client.post("/mcp", json=INIT_BODY, headers=ACCEPT)
        assert sorted(harness.registry.session_ids()) == ["sid-1", "sid-2"]
        assert harness.transports[0] is not harness.transports[1]

    def test_unconfirmed_session_is_discarded(self):
        harness = Harness(confirm=False)
        with TestClient(harness.app) as test_client:
            resp = test_client.post("/mcp", json=INIT_BODY, headers=ACCEPT)
            assert MCP_SESSION_ID_HEADER not in resp.headers
            assert len(harness.registry) == 0
            assert harness.transports[0].terminated is True


class TestContinueSession:
    def test_follow_up_reaches_same_transport(self, harness, client):
        sid = client.post("/mcp", json=INIT_BODY, headers=ACCEPT).headers[MCP_SESSION_ID_HEADER]
        resp = client.post("/mcp", json=LIST_BODY, headers={**ACCEPT, MCP_SESSION_ID_HEADER: sid})
        assert resp.status_code == 200
        assert resp.json() == {"handled_by": sid}
        assert len(harness.transports) == 1
        assert len(harness.transports[0].requests) == 2

    def test_get_and_delete_routed(self, harness, client):
        sid = client.post("/mcp", json=INIT_BODY, headers=ACCEPT).headers[MCP_SESSION_ID_HEADER]
        client.get("/mcp", headers={MCP_SESSION_ID_HEADER: sid})
        client.delete("/mcp", headers={MCP_SESSION_ID_HEADER: sid})
        methods = [m for m, _ in harness.transports[0].requests]
        assert methods == ["POST", "GET", "DELETE"]

    def test_closed_session_is_removed(self, harness, client):
        sid = client.post("/mcp", json=INIT_BODY, headers=ACCEPT).headers[MCP_SESSION_ID_HEADER]
        client.portal.call(harness.transports[0].terminate)
        assert _wait_for(lambda: sid not in harness.registry)
        resp = client.post("/mcp", json=LIST_BODY, headers={MCP_SESSION_ID_HEADER: sid})
        assert resp.status_code == 400


class TestReject:
    def _assert_rejected(self, resp):
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid MCP request"}

    def test_unknown_session_id(self, harness, client):
        self._assert_rejected(
            client.post("/mcp", json=LIST_BODY, headers={MCP_SESSION_ID_HEADER: "nope"})
        )
        assert harness.transports == []

    def test_initialize_with_stale_session_id(self, harness, client):
        self._assert_rejected(
            client.post("/mcp", json=INIT_BODY, headers={MCP_SESSION_ID_HEADER: "stale"})
        )
        assert len(harness.registry) == 0

    def test_post_without_session_not_initialize(self, client):
        self._assert_rejected(client.post("/mcp", json=LIST_BODY))

    def test_post_malformed_json(self, client):
        self._assert_rejected(
            client.post("/mcp", content=b"{not json", headers={"content-type": "application/json"})
        )

    def test_get_without_session(self, client):
        self._assert_rejected(client.get("/mcp"))

    def test_delete_without_session(self, client):
        self._assert_rejected(client.delete("/mcp"))

    def test_other_paths_not_served(self, client):
        assert client.post("/other", json=INIT_BODY).status_code == 404


class TestInternalError:
    def test_transport_exception_becomes_500(self, harness, client):
        broken = FakeTransport("sid-x", False, fail=RuntimeError("kaboom"))
        harness.registry.register("sid-x", broken)
        resp = client.post("/mcp", json=LIST_BODY, headers={MCP_SESSION_ID_HEADER: "sid-x"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error", "message": "kaboom"}


class TestShutdownOverHttp:
    def test_shutdown_terminates_live_sessions(self, harness, client):
        client.post("/mcp", json=INIT_BODY, headers=ACCEPT)
        client.post("/mcp", json=INIT_BODY, headers=ACCEPT)
        assert client.portal.call(harness.lifecycle.shutdown, "SIGTERM") is True
        assert all(t.terminated for t in harness.transports)
        assert len(harness.registry) == 0


# ---------------------------------------------------------------------------
# Real transport
# ---------------------------------------------------------------------------


class TestRealTransport:
    @pytest.fixture
    def real(self):
        gemini = MagicMock()
        gemini.generate = AsyncMock(return_value={"text": "pong"})
        registry = SessionRegistry()
        lifecycle = ShutdownController(registry, exit_fn=lambda code: None)
        app = create_app(create_server(gemini), registry, lifecycle, json_response=True)
        with TestClient(app) as test_client:
            yield test_client, registry

    def _headers(self, sid=None):
        headers = {**ACCEPT, "content-type": "application/json"}
        if sid:
            headers[MCP_SESSION_ID_HEADER] = sid
            headers["mcp-protocol-version"] = types.LATEST_PROTOCOL_VERSION
        return headers

    def test_initialize_list_call_delete(self, real):
        client, registry = real
        init = client.post("/mcp", json=INIT_BODY, headers=self._headers())
        assert init.status_code == 200
        sid = init.headers[MCP_SESSION_ID_HEADER]
        assert sid in registry
        assert init.json()["result"]["serverInfo"]["name"] == "GeminiMcpServer"

        ack = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
            headers=self._headers(sid),
        )
        assert ack.status_code == 202

        listed = client.post("/mcp", json=LIST_BODY, headers=self._headers(sid))
        assert [t["name"] for t in listed.json()["result"]["tools"]] == ["callGemini"]

        called = client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 3,
                "method": "tools/call",
                "params": {"name": "callGemini", "arguments": {"prompt": "ping"}},
            },
            headers=self._headers(sid),
        )
        result = called.json()["result"]
        assert result["isError"] is False
        assert result["content"][0]["text"] == "pong"

        client.delete("/mcp", headers=self._headers(sid))
        assert _wait_for(lambda: sid not in registry)
