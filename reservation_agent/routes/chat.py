from __future__ import annotations

from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from reservation_agent.config import get_settings
from reservation_agent.services.sessions import (
    ConversationSession,
    SessionBusyError,
    create_session,
    get_session,
    register_session,
    unregister_session,
)

router = APIRouter()


class SendMessage(BaseModel):
    text: str = Field(min_length=1, max_length=2000)


def get_session_factory() -> Callable[[], ConversationSession]:
    return lambda: create_session(get_settings())


def _require_session(session_id: str) -> ConversationSession:
    session = get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session not found")
    return session


@router.post("/sessions", status_code=201)
def start_session(factory: Callable[[], ConversationSession] = Depends(get_session_factory)) -> Dict[str, Any]:
    session = factory()
    register_session(session)
    return session.snapshot()


@router.get("/sessions/{session_id}")
def read_session(session_id: str) -> Dict[str, Any]:
    return _require_session(session_id).snapshot()


@router.post("/sessions/{session_id}/messages")
async def send_message(session_id: str, body: SendMessage) -> Dict[str, Any]:
    session = _require_session(session_id)
    try:
        outcome = await session.send(body.text)
    except SessionBusyError:
        raise HTTPException(status_code=409, detail="a turn is already in progress")
    return {"outcome": outcome.to_dict(), "session": session.snapshot()}


@router.delete("/sessions/{session_id}", status_code=204)
def end_session(session_id: str) -> None:
    _require_session(session_id)
    unregister_session(session_id)
