"""Multi-session management: many engines, one active at a time.

Each session owns a run engine (and so a thread). Submitting to the
active session schedules the run as a background task; switching away
does not stop it, so background sessions keep polling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tether.core.errors import SessionError, TetherError

if TYPE_CHECKING:
    from collections.abc import Callable

    from tether.engine.machine import RunResult
    from tether.engine.runner import RunEngine

    EngineFactory = Callable[[str], RunEngine]

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One conversation: an engine plus its in-flight run, if any."""

    id: str
    engine: RunEngine
    task: asyncio.Task[RunResult] | None = None
    results: list[RunResult] = field(default_factory=list)

    @property
    def busy(self) -> bool:
        return self.task is not None and not self.task.done()


class SessionManager:
    """Holds sessions and routes input to the active one.

    Args:
        engine_factory: ``session_id -> RunEngine``; called once per new
            session.
    """

    def __init__(self, engine_factory: EngineFactory) -> None:
        self._factory = engine_factory
        self._sessions: list[Session] = []
        self._active_index = 0

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions)

    @property
    def active_index(self) -> int:
        return self._active_index

    @property
    def active(self) -> Session:
        """The active session, creating the first one on demand."""
        if not self._sessions:
            return self.create_session()
        return self._sessions[self._active_index]

    def create_session(self) -> Session:
        """Create a session and make it active."""
        session_id = uuid.uuid4().hex[:8]
        session = Session(id=session_id, engine=self._factory(session_id))
        self._sessions.append(session)
        self._active_index = len(self._sessions) - 1
        logger.info("Created session %s", session_id)
        return session

    def switch_to(self, index: int) -> Session:
        """Make the session at *index* (0-based) active.

        Raises:
            SessionError: If *index* is out of range.
        """
        if not 0 <= index < len(self._sessions):
            msg = f"No session at index {index} ({len(self._sessions)} open)"
            raise SessionError(msg)
        self._active_index = index
        return self._sessions[index]

    def next_session(self) -> Session:
        """Cycle to the next session, wrapping around."""
        if not self._sessions:
            return self.create_session()
        return self.switch_to((self._active_index + 1) % len(self._sessions))

    def submit(self, text: str) -> asyncio.Task[RunResult]:
        """Start a run for *text* on the active session in the background.

        Raises:
            SessionError: If the active session already has a run in flight.
        """
        session = self.active
        if session.busy:
            msg = f"Session {session.id} is busy"
            raise SessionError(msg)
        task = asyncio.create_task(session.engine.submit(text))
        session.task = task
        task.add_done_callback(lambda t: self._on_done(session, t))
        return task

    async def cancel_active(self) -> None:
        """Cancel the active session's run (or its next one)."""
        await self.active.engine.cancel()

    async def close_session(self, index: int | None = None) -> None:
        """Close one session (the active one by default)."""
        idx = self._active_index if index is None else index
        if not 0 <= idx < len(self._sessions):
            msg = f"No session at index {idx} ({len(self._sessions)} open)"
            raise SessionError(msg)
        session = self._sessions.pop(idx)
        if idx < self._active_index:
            self._active_index -= 1
        self._active_index = max(0, min(self._active_index, len(self._sessions) - 1))
        await self._shutdown(session)

    async def close(self) -> None:
        """Cancel outstanding runs and tasks in every session."""
        for session in self._sessions:
            await self._shutdown(session)
        self._sessions = []
        self._active_index = 0

    # ── Internals ─────────────────────────────────────────────

    async def _shutdown(self, session: Session) -> None:
        if not session.busy:
            return
        try:
            await session.engine.cancel()
        except TetherError as e:
            logger.warning("Remote cancel failed for session %s: %s", session.id, e)
        task = session.task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _on_done(self, session: Session, task: asyncio.Task[RunResult]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session %s run raised: %s", session.id, exc)
            return
        session.results.append(task.result())
