"""Registry of active call sessions."""

from __future__ import annotations

import asyncio
from typing import Any

from callbridge.core.services import BridgeServices
from callbridge.core.session import CallSession, GatewaySender
from callbridge.logging_config import get_logger

logger: Any = get_logger(__name__)

# Default capacity limit to prevent overload
MAX_CONCURRENT_CALLS = 10


class CallCapacityError(Exception):
    """Raised when system is at maximum call capacity."""

    pass


class CallSessionRegistry:
    """Async-safe registry of active call sessions.

    Sessions are keyed by connection id, so two sockets that share a
    gateway call id still get separate sessions.
    """

    def __init__(self, max_sessions: int = MAX_CONCURRENT_CALLS) -> None:
        self._sessions: dict[str, CallSession] = {}
        self._lock = asyncio.Lock()
        self._max_sessions = max_sessions

    async def create(
        self,
        services: BridgeServices,
        sender: GatewaySender,
        *,
        call_id: str | None = None,
    ) -> CallSession:
        """Create and register a session for a new connection.

        Raises:
            CallCapacityError: If system is at maximum capacity.
        """
        async with self._lock:
            if len(self._sessions) >= self._max_sessions:
                logger.warning(
                    f"Max concurrent calls reached ({self._max_sessions}), "
                    f"rejecting call {call_id or '<new>'}"
                )
                raise CallCapacityError(
                    f"System at capacity ({self._max_sessions} concurrent calls)"
                )

            session = CallSession(services, sender, call_id=call_id)
            self._sessions[session.connection_id] = session

            logger.info(
                f"Created session for call {session.call_id} "
                f"(active: {len(self._sessions)}/{self._max_sessions})"
            )
            return session

    async def get(self, connection_id: str) -> CallSession | None:
        """Get an active session."""
        async with self._lock:
            return self._sessions.get(connection_id)

    async def remove(self, connection_id: str) -> CallSession | None:
        """Remove session from registry.

        Returns the session for final cleanup.
        """
        async with self._lock:
            return self._sessions.pop(connection_id, None)

    async def close_all(self) -> None:
        """Close all sessions (for shutdown)."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            try:
                await session.on_close()
            except Exception as e:
                logger.error(f"Error closing session {session.call_id}: {e}")

    @property
    def active_count(self) -> int:
        """Number of active sessions."""
        return len(self._sessions)

    @property
    def capacity(self) -> int:
        """Maximum concurrent sessions."""
        return self._max_sessions
