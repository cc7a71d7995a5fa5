"""MCP server exposing the Gemini API as the ``callGemini`` tool.

Package structure:
  __init__.py    — server assembly, stdio and HTTP runners, re-exports
  _core.py       — tool result envelopes, HTTP error bodies
  _tools.py      — callGemini definition, invocation boundary, register()
  _sessions.py   — SessionRegistry (session id -> transport)
  _http.py       — McpRouter, request log middleware, Starlette app
  _lifecycle.py  — ShutdownController (signals, fatal errors, session close)

Run: gemini-mcp [--transport stdio|http]
"""

from __future__ import annotations

import logging
import os
import signal
import sys

import anyio
import uvicorn
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from gemini_mcp import config
from gemini_mcp.client import GeminiClient
from gemini_mcp.mcp_server import _tools
from gemini_mcp.mcp_server._http import (
    McpRouter,
    RequestLogMiddleware,
    RouteAction,
    classify_request,
    create_app,
    is_initialize_request,
)
from gemini_mcp.mcp_server._lifecycle import EXIT_OK, ShutdownController, ShutdownState
from gemini_mcp.mcp_server._sessions import Session, SessionRegistry
from gemini_mcp.mcp_server._tools import call_gemini, tool_definition

logger = logging.getLogger(__name__)

__all__ = [
    "EXIT_OK",
    "McpRouter",
    "RequestLogMiddleware",
    "RouteAction",
    "Session",
    "SessionRegistry",
    "ShutdownController",
    "ShutdownState",
    "call_gemini",
    "classify_request",
    "create_app",
    "create_server",
    "is_initialize_request",
    "serve_http",
    "serve_stdio",
    "tool_definition",
]


def create_server(client: GeminiClient) -> Server:
    """Build the low-level MCP server with the Gemini tool registered."""
    server = Server(
        config.SERVER_NAME,
        version=config.VERSION,
        instructions=config.SERVER_INSTRUCTIONS,
    )
    _tools.register(server, client)
    return server


def _exit_process(code: int) -> None:
    """Final shutdown step for stdio: end the process outright.

    The stdin reader blocks in a worker thread that cancellation cannot
    reach, so unwinding the event loop would hang until stdin closes.
    """
    logging.shutdown()
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


async def serve_stdio(client: GeminiClient) -> int:
    """Serve one client over stdin/stdout.

    Returns EXIT_OK when the client closes stdin. A shutdown trigger ends
    the process from inside the controller instead of returning.
    """
    logger.info(
        "Starting %s v%s with stdio transport", config.SERVER_NAME, config.VERSION
    )
    server = create_server(client)

    async with stdio_server() as (read_stream, write_stream):
        with anyio.CancelScope() as scope:

            async def close_server() -> None:
                scope.cancel()

            controller = ShutdownController(SessionRegistry(), close_server, _exit_process)
            controller.install()
            logger.info("%s connected and ready to use", config.SERVER_NAME)
            await server.run(read_stream, write_stream, server.create_initialization_options())

    return EXIT_OK


class _UvicornServer(uvicorn.Server):
    """uvicorn server whose first SIGINT/SIGTERM runs the shutdown controller.

    A second signal while shutting down falls back to uvicorn's own handling.
    """

    def __init__(self, uv_config: uvicorn.Config, controller: ShutdownController) -> None:
        super().__init__(uv_config)
        self.controller = controller

    def handle_exit(self, sig, frame) -> None:
        if self.controller.state is ShutdownState.RUNNING:
            self.controller.trigger(signal.Signals(sig).name)
            return
        super().handle_exit(sig, frame)


async def serve_http(settings: config.Settings, client: GeminiClient) -> int:
    """Serve MCP over streamable HTTP until a shutdown trigger."""
    server = create_server(client)
    registry = SessionRegistry()
    exit_codes: list[int] = []
    uv_server: _UvicornServer | None = None

    async def close_server() -> None:
        if uv_server is not None:
            uv_server.should_exit = True

    controller = ShutdownController(registry, close_server, exit_codes.append)
    app = create_app(server, registry, controller, json_response=settings.json_response)
    uv_config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        access_log=False,
        timeout_graceful_shutdown=5,
    )
    uv_server = _UvicornServer(uv_config, controller)
    controller.install()

    logger.info(
        "%s HTTP server listening on port %s", config.SERVER_NAME, settings.port
    )
    await uv_server.serve()
    return exit_codes[0] if exit_codes else EXIT_OK
