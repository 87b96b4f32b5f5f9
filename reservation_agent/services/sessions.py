from __future__ import annotations

import asyncio
import secrets
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set

import logging

from reservation_agent.config import Settings
from reservation_agent.models.turns import TurnOutcome
from reservation_agent.services.brain import BrainClient
from reservation_agent.services.call_dispatcher import CallDispatcher, CallNowClient
from reservation_agent.services.datetime_parser import DateTimeParser
from reservation_agent.services.orchestrator import TurnOrchestrator
from reservation_agent.services.places import DestinationPhoneResolver, KnownBusinessDirectory, PlacesClient
from reservation_agent.services.tool_dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)


class SessionBusyError(RuntimeError):
    pass


class ConversationSession:
    """One conversation: an orchestrator plus the one-turn-at-a-time guard."""

    def __init__(self, orchestrator: TurnOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.session_id: Optional[str] = None
        self.started_at: Optional[float] = None
        self.busy = False
        self.last_outcome: Optional[TurnOutcome] = None
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    def handle_send(self, text: str) -> bool:
        """Schedule a turn without waiting for it. False when busy or empty."""
        if self.busy or not (text or "").strip():
            return False
        turn = self._run(text)
        try:
            task = asyncio.create_task(turn)
        except RuntimeError:
            turn.close()
            raise
        self.busy = True
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return True

    async def send(self, text: str) -> TurnOutcome:
        if self.busy:
            raise SessionBusyError(f"session {self.session_id} is already handling a turn")
        self.busy = True
        return await self._run(text)

    async def _run(self, text: str) -> TurnOutcome:
        try:
            async with self._lock:
                outcome = await self.orchestrator.handle_turn(text)
                self.last_outcome = outcome
                return outcome
        finally:
            self.busy = False

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("session.turn_failed session=%s", self.session_id, exc_info=task.exception())

    def snapshot(self) -> Dict[str, Any]:
        return {"sessionId": self.session_id, "busy": self.busy, **self.orchestrator.snapshot()}


_active_sessions: Dict[str, ConversationSession] = {}


def register_session(session: ConversationSession) -> str:
    session_id = secrets.token_urlsafe(18)
    session.session_id = session_id
    session.started_at = time.time()
    _active_sessions[session_id] = session
    logger.info("session.registered session=%s", session_id)
    return session_id


def unregister_session(session_id: str) -> None:
    _active_sessions.pop(session_id, None)
    logger.info("session.unregistered session=%s", session_id)


def get_session(session_id: str) -> Optional[ConversationSession]:
    return _active_sessions.get(session_id)


def create_session(
    settings: Settings,
    brain: Optional[BrainClient] = None,
    call_client: Optional[CallNowClient] = None,
    places: Optional[PlacesClient] = None,
    directory: Optional[KnownBusinessDirectory] = None,
    now: Optional[Callable[[], datetime]] = None,
) -> ConversationSession:
    """Wire up a session from settings; any collaborator can be swapped out."""
    parser = DateTimeParser(settings.reference_timezone, now=now)
    resolver = DestinationPhoneResolver(
        directory or KnownBusinessDirectory(path=settings.known_businesses_path or None),
        places or PlacesClient(settings),
    )
    tools = ToolDispatcher(parser, resolver, CallDispatcher(call_client or CallNowClient(settings)))
    orchestrator = TurnOrchestrator(settings, brain or BrainClient(settings), tools, parser)
    return ConversationSession(orchestrator)
