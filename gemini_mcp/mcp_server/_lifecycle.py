"""Lifecycle: per-session close handling and one-shot process shutdown."""

from __future__ import annotations

import asyncio
import enum
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from gemini_mcp.mcp_server._sessions import Session, SessionRegistry

logger = logging.getLogger(__name__)

EXIT_OK = 0


class ShutdownState(enum.Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    STOPPED = "stopped"


class ShutdownController:
    """Tears down every session and the server exactly once.

    Shutdown is best-effort: a transport that fails to close is logged and
    skipped, and the exit callback runs with status 0 no matter what.

    Args:
        registry: Sessions to close on shutdown.
        close_server: Coroutine function that stops the protocol server.
        exit_fn: Called with the exit status as the final step.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        close_server: Callable[[], Awaitable[Any]] | None = None,
        exit_fn: Callable[[int], Any] = sys.exit,
    ) -> None:
        self.registry = registry
        self._close_server = close_server
        self._exit_fn = exit_fn
        self._state = ShutdownState.RUNNING
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    def on_session_closed(self, session_id: str) -> None:
        """Close hook for a transport; safe to call more than once."""
        if self.registry.remove(session_id) is not None:
            logger.info("Session closed", extra={"session_id": session_id})

    async def _close_session(self, session: Session) -> None:
        try:
            await session.transport.terminate()
            logger.debug("Closed transport", extra={"session_id": session.session_id})
        except Exception as e:
            logger.warning(
                "Error closing transport",
                extra={"session_id": session.session_id, "error": str(e)},
            )
        self.on_session_closed(session.session_id)

    async def shutdown(self, reason: str) -> bool:
        """Run the shutdown sequence. Returns False if one already started."""
        if self._state is not ShutdownState.RUNNING:
            logger.debug("Shutdown already in progress", extra={"reason": reason})
            return False
        self._state = ShutdownState.SHUTTING_DOWN
        logger.info("Received %s, shutting down...", reason)

        for pending in self.registry.for_each(self._close_session):
            await pending

        if self._close_server is not None:
            try:
                await self._close_server()
                logger.info("MCP server closed successfully")
            except Exception as e:
                logger.error("Error closing MCP server", extra={"error": str(e)})

        self._state = ShutdownState.STOPPED
        self._exit_fn(EXIT_OK)
        return True

    # ------------------------------------------------------------------
    # Process-level triggers
    # ------------------------------------------------------------------

    def trigger(self, reason: str) -> None:
        """Schedule shutdown from a signal or error handler."""
        loop = self._loop
        if loop is None:
            loop = asyncio.get_running_loop()
        loop.call_soon_threadsafe(self._spawn, reason)

    def _spawn(self, reason: str) -> None:
        if self._state is not ShutdownState.RUNNING or self._task is not None:
            logger.debug("Shutdown already in progress", extra={"reason": reason})
            return
        self._task = asyncio.ensure_future(self.shutdown(reason))

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Hook SIGINT/SIGTERM and uncaught loop errors to shutdown."""
        self._loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(sig, self.trigger, sig.name)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler.
                signal.signal(sig, lambda s, f: self.trigger(signal.Signals(s).name))
        self._loop.set_exception_handler(self._handle_loop_exception)

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        if exc is None:
            logger.warning("Event loop error", extra={"detail": context.get("message")})
            return
        logger.error(
            "Uncaught exception",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={"detail": context.get("message")},
        )
        self.trigger("uncaughtException")
