"""Session registry: the single map from MCP session id to live transport."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from gemini_mcp.exceptions import SessionRegistryError


@dataclass(frozen=True)
class Session:
    """One client conversation multiplexed over stateless HTTP calls."""

    session_id: str
    transport: Any
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionRegistry:
    """Thread-safe mapping of session id -> Session.

    Each method is atomic on its own; no lock is held across an await, so a
    caller that needs several steps gets no transaction.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def register(self, session_id: str, transport: Any) -> Session:
        """Add a session. A duplicate id is a bug in the id generator."""
        session = Session(session_id=session_id, transport=transport)
        with self._lock:
            if session_id in self._sessions:
                raise SessionRegistryError(f"Session id already registered: {session_id}")
            self._sessions[session_id] = session
        return session

    def lookup(self, session_id: str | None) -> Any | None:
        """Return the transport for ``session_id``, or None if unknown."""
        if session_id is None:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
        return session.transport if session else None

    def remove(self, session_id: str) -> Session | None:
        """Drop a session. Removing an absent id is a no-op."""
        with self._lock:
            return self._sessions.pop(session_id, None)

    def snapshot(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def for_each(self, visit: Callable[[Session], Any]) -> list[Any]:
        """Call ``visit`` on a snapshot, so visits may remove entries safely.

        Returns the visit results in order; a coroutine-function visitor
        yields coroutines the caller awaits one by one.
        """
        return [visit(session) for session in self.snapshot()]

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
