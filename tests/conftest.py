from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from reservation_agent.config import Settings
from reservation_agent.models.calls import CallRequest
from reservation_agent.models.messages import BrainReply, ToolCallRequest
from reservation_agent.services.datetime_parser import DateTimeParser
from reservation_agent.services.places import KnownBusinessDirectory
from reservation_agent.services.sessions import create_session

# Wednesday, noon in New York.
WEDNESDAY = datetime(2024, 11, 6, 12, 0)


def reply(content: str = "", *calls: ToolCallRequest, slots: Optional[Dict[str, Any]] = None) -> BrainReply:
    return BrainReply(content=content, tool_calls=list(calls), slots=slots)


def tool(name: str, call_id: str = "call_1", **arguments: Any) -> ToolCallRequest:
    return ToolCallRequest(name=name, arguments=arguments, call_id=call_id)


class FakeBrain:
    """Replays scripted replies; an Exception in the script is raised instead."""

    def __init__(self, *script: Any) -> None:
        self.script: List[Any] = list(script)
        self.requests: List[Dict[str, Any]] = []

    async def respond(self, messages, slots, thread_id=None, request_id=None) -> BrainReply:
        self.requests.append(
            {
                "messages": [message.to_wire() for message in messages],
                "slots": copy.deepcopy(slots.snapshot()),
            }
        )
        if not self.script:
            return BrainReply()
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeCallClient:
    def __init__(self, response: Optional[Dict[str, Any]] = None) -> None:
        self.response = response or {"ok": True, "callId": "call-123"}
        self.requests: List[CallRequest] = []

    async def call_now(self, request: CallRequest) -> Dict[str, Any]:
        self.requests.append(request)
        return self.response


class FakePlaces:
    def __init__(self, phones: Optional[Dict[str, str]] = None) -> None:
        self.phones = phones or {}
        self.lookups: List[str] = []

    async def place_phone(self, place_id: str) -> Optional[str]:
        self.lookups.append(place_id)
        return self.phones.get(place_id)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        brain_url="https://brain.test/functions/v1/jason-brain",
        functions_base="https://edge.test/functions/v1",
        supabase_anon_key="anon-key",
        max_tool_rounds=6,
    )


@pytest.fixture
def parser() -> DateTimeParser:
    return DateTimeParser("America/New_York", now=lambda: WEDNESDAY)


@pytest.fixture
def directory() -> KnownBusinessDirectory:
    return KnownBusinessDirectory(
        [{"name": "Via Carota", "aliases": [], "e164_phone": "+12125550147"}]
    )


@pytest.fixture
def make_session(settings, directory):
    def factory(brain: FakeBrain, call_client: Optional[FakeCallClient] = None, places: Optional[FakePlaces] = None):
        return create_session(
            settings,
            brain=brain,
            call_client=call_client or FakeCallClient(),
            places=places or FakePlaces(),
            directory=directory,
            now=lambda: WEDNESDAY,
        )

    return factory
