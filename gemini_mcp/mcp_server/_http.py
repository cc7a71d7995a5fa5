"""Streamable HTTP front end: request router, session start-up, Starlette app.

Every request on the MCP path lands in McpRouter, which decides exactly one of:

- continue: the session header names a registered session, so the raw
  request goes to that session's transport untouched;
- begin: no session header, a POST, and an ``initialize`` body, so a new
  transport is built and registered once it confirms its session id;
- reject: anything else gets ``400 {"error": "Invalid MCP request"}``.

An unknown session id is always rejected, even on an ``initialize`` body.
Clients must omit the header entirely to start over.
"""

from __future__ import annotations

import contextlib
import enum
import json
import logging
import time
from collections.abc import Callable
from typing import Any
from uuid import uuid4

import anyio
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.datastructures import Headers
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from gemini_mcp import config
from gemini_mcp.mcp_server._core import _internal_error_body, _invalid_request_body
from gemini_mcp.mcp_server._lifecycle import ShutdownController
from gemini_mcp.mcp_server._sessions import SessionRegistry

logger = logging.getLogger(__name__)


class RouteAction(enum.Enum):
    CONTINUE = "continue"
    BEGIN = "begin"
    REJECT = "reject"


def is_initialize_request(body: Any) -> bool:
    """True if ``body`` is a single JSON-RPC ``initialize`` request."""
    if not isinstance(body, dict) or body.get("method") != "initialize":
        return False
    try:
        message = types.JSONRPCMessage.model_validate(body)
        if not isinstance(message.root, types.JSONRPCRequest):
            return False
        types.InitializeRequest.model_validate(
            {"method": message.root.method, "params": message.root.params}
        )
    except ValidationError:
        return False
    return True


def classify_request(
    session_id: str | None, session_known: bool, method: str, body_is_init: bool
) -> RouteAction:
    """Pure routing decision; the order of the checks is significant."""
    if session_id is not None and session_known:
        return RouteAction.CONTINUE
    if session_id is None and method == "POST" and body_is_init:
        return RouteAction.BEGIN
    return RouteAction.REJECT


def _parse_json(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _replay_receive(body: bytes, receive):
    """ASGI receive that hands back an already-read body, then defers."""
    delivered = False

    async def replay():
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class _ResponseTracker:
    """Wraps ASGI send to remember whether the response has started."""

    def __init__(self, send) -> None:
        self._send = send
        self.started = False

    async def __call__(self, message) -> None:
        if message["type"] == "http.response.start":
            self.started = True
        await self._send(message)


class _SessionHandshake:
    """Single-shot confirmation that a new transport's session id is live.

    The transport announces its id in the response headers of the
    ``initialize`` exchange; that moment fires ``on_confirmed`` once.
    """

    def __init__(self, session_id: str, on_confirmed: Callable[[], None]) -> None:
        self.session_id = session_id
        self._on_confirmed = on_confirmed
        self.confirmed = anyio.Event()

    def wrap_send(self, send):
        async def confirming_send(message) -> None:
            if message["type"] == "http.response.start" and not self.confirmed.is_set():
                headers = Headers(raw=message.get("headers", []))
                if (
                    message.get("status", 500) < 400
                    and headers.get(MCP_SESSION_ID_HEADER) == self.session_id
                ):
                    self.confirmed.set()
                    self._on_confirmed()
            await send(message)

        return confirming_send


class McpRouter:
    """ASGI app for the MCP path; owns session start-up and routing.

    Args:
        server: Low-level MCP server run once per session.
        registry: Session map shared with the shutdown controller.
        lifecycle: Receives per-session close notifications.
        transport_factory: Builds a transport from ``mcp_session_id`` and
            ``is_json_response_enabled`` keyword arguments.
        id_generator: Returns a fresh, unique session id.
        json_response: Answer POSTs with JSON instead of SSE streams.
    """

    def __init__(
        self,
        server: Server,
        registry: SessionRegistry,
        lifecycle: ShutdownController,
        *,
        transport_factory: Callable[..., Any] = StreamableHTTPServerTransport,
        id_generator: Callable[[], str] = lambda: uuid4().hex,
        json_response: bool = False,
    ) -> None:
        self.server = server
        self.registry = registry
        self.lifecycle = lifecycle
        self._transport_factory = transport_factory
        self._id_generator = id_generator
        self._json_response = json_response
        self._task_group: anyio.abc.TaskGroup | None = None

    @contextlib.asynccontextmanager
    async def run(self):
        """Hold the task group that per-session server loops run in."""
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            try:
                yield self
            finally:
                tg.cancel_scope.cancel()
                self._task_group = None

    async def __call__(self, scope, receive, send) -> None:
        tracker = _ResponseTracker(send)
        session_id = Headers(scope=scope).get(MCP_SESSION_ID_HEADER)
        try:
            await self._route(scope, receive, tracker, session_id)
        except Exception as e:
            logger.error(
                "Error handling MCP request",
                exc_info=True,
                extra={"session_id": session_id, "error": str(e)},
            )
            if not tracker.started:
                response = JSONResponse(_internal_error_body(e), status_code=500)
                await response(scope, receive, send)

    async def _route(self, scope, receive, send, session_id: str | None) -> None:
        request = Request(scope, receive)
        transport = self.registry.lookup(session_id)

        body_is_init = False
        if session_id is None and request.method == "POST":
            raw = await request.body()
            body_is_init = is_initialize_request(_parse_json(raw))
            receive = _replay_receive(raw, receive)

        action = classify_request(session_id, transport is not None, request.method, body_is_init)
        if action is RouteAction.CONTINUE:
            await transport.handle_request(scope, receive, send)
        elif action is RouteAction.BEGIN:
            await self._begin_session(scope, receive, send)
        else:
            logger.warning(
                "Invalid MCP request",
                extra={
                    "session_id": session_id,
                    "method": request.method,
                    "is_init": body_is_init,
                },
            )
            response = JSONResponse(_invalid_request_body(), status_code=400)
            await response(scope, receive, send)

    async def _begin_session(self, scope, receive, send) -> None:
        if self._task_group is None:
            raise RuntimeError("McpRouter.run() must be active to start sessions")

        session_id = self._id_generator()
        transport = self._transport_factory(
            mcp_session_id=session_id,
            is_json_response_enabled=self._json_response,
        )

        def register() -> None:
            self.registry.register(session_id, transport)
            logger.info("Session initialized", extra={"session_id": session_id})

        handshake = _SessionHandshake(session_id, register)
        await self._task_group.start(self._run_session, session_id, transport)
        await transport.handle_request(scope, receive, handshake.wrap_send(send))

        if not handshake.confirmed.is_set():
            logger.warning("Session handshake failed", extra={"session_id": session_id})
            await transport.terminate()

    async def _run_session(
        self, session_id: str, transport: Any, *, task_status=anyio.TASK_STATUS_IGNORED
    ) -> None:
        try:
            async with transport.connect() as (read_stream, write_stream):
                task_status.started()
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                    stateless=False,
                )
        except Exception:
            logger.error("Session server loop failed", exc_info=True, extra={"session_id": session_id})
        finally:
            self.lifecycle.on_session_closed(session_id)


class RequestLogMiddleware:
    """Pure ASGI access log; safe for streaming SSE responses."""

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status = {"code": None}

        async def send_wrapper(message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            logger.info(
                "HTTP request",
                extra={
                    "method": scope.get("method"),
                    "path": scope.get("path"),
                    "status": status["code"],
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                    "session_id": Headers(scope=scope).get(MCP_SESSION_ID_HEADER, "none"),
                },
            )


def create_app(
    server: Server,
    registry: SessionRegistry,
    lifecycle: ShutdownController,
    *,
    path: str = config.MCP_PATH,
    json_response: bool = False,
    transport_factory: Callable[..., Any] = StreamableHTTPServerTransport,
    id_generator: Callable[[], str] | None = None,
) -> Starlette:
    """Build the Starlette app serving GET/POST/DELETE on ``path``."""
    router_kwargs: dict[str, Any] = {
        "transport_factory": transport_factory,
        "json_response": json_response,
    }
    if id_generator is not None:
        router_kwargs["id_generator"] = id_generator
    router = McpRouter(server, registry, lifecycle, **router_kwargs)

    @contextlib.asynccontextmanager
    async def lifespan(app):
        async with router.run():
            yield

    app = Starlette(
        routes=[Route(path, endpoint=router, methods=["GET", "POST", "DELETE"])],
        middleware=[Middleware(RequestLogMiddleware)],
        lifespan=lifespan,
    )
    app.state.router = router
    app.state.registry = registry
    return app
