"""In-process relay session registry.

Tracks connected console viewers with live object references so shutdown
can cancel them.  Ephemeral -- empty on process restart.  All durable state
lives in PostgreSQL.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from shardhost.control_plane.context import RelaySession


class ShuttingDownError(RuntimeError):
    """Raised when attempting to register a session during shutdown."""


class RelayRegistry:
    """Registry of currently connected relay sessions.

    Provides a drain mechanism for graceful shutdown: ``wait_until_drained``
    blocks until all sessions have been unregistered.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, RelaySession] = {}
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Starts "drained" (no sessions).
        self._shutting_down = False

    # -- Mutation --------------------------------------------------------------

    def register(self, session: RelaySession) -> None:
        """Register a session.  Raises ``ShuttingDownError`` if shutting down."""
        if self._shutting_down:
            raise ShuttingDownError
        logger.debug("Registry: register relay {} (workload={})", session.session_id, session.workload_id)
        self._sessions[session.session_id] = session
        self._drain_event.clear()

    def unregister(self, session_id: str) -> RelaySession | None:
        session = self._sessions.pop(session_id, None)
        if session:
            logger.debug("Registry: unregister relay {}", session_id)
        if not self._sessions:
            self._drain_event.set()
        return session

    # -- Query -----------------------------------------------------------------

    def get(self, session_id: str) -> RelaySession | None:
        return self._sessions.get(session_id)

    def by_workload(self, workload_id: str) -> list[RelaySession]:
        """Return all sessions attached to a workload."""
        return [s for s in self._sessions.values() if s.workload_id == workload_id]

    def all_sessions(self) -> list[RelaySession]:
        return list(self._sessions.values())

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New registrations are refused."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new relay sessions")
        if not self._sessions:
            self._drain_event.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    def cancel_all(self) -> int:
        """Cancel the relay task of every active session.

        Each relay loop releases its own runtime handles in ``finally``, so
        cancellation is enough to free them.  Returns the number of tasks
        cancelled.
        """
        count = 0
        for session in self._sessions.values():
            if session.task is not None and not session.task.done():
                session.task.cancel()
                count += 1
                logger.info("Registry: cancelled relay {}", session.session_id)
        return count

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until all sessions have been unregistered.

        Returns ``True`` if the registry is empty, ``False`` if *timeout*
        expired with sessions still active.
        """
        if not self._sessions:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Registry: drain timed out after {}s with {} relay sessions still active",
                timeout,
                len(self._sessions),
            )
            return False
        else:
            return True
