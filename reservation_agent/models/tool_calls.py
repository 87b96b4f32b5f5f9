"""Typed view of the tool invocations the brain can emit.

Arguments arrive duck-typed; each variant pulls its own fields through a fixed
alias table so handlers never probe raw dictionaries.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field

from reservation_agent.models.messages import ToolCallRequest

UPSERT_SLOTS = "upsert_request_slots"
ASK_USER = "ask_user"
GUIDE_USER = "guide_user"
CONFIRM = "confirm"
START_REQUEST = "start_request"

_NAME_ALIASES = {
    "upsert_request_slots": UPSERT_SLOTS,
    "upsert_slots": UPSERT_SLOTS,
    "slot_set": UPSERT_SLOTS,
    "ask_user": ASK_USER,
    "guide_user": GUIDE_USER,
    "confirm": CONFIRM,
    "start_request": START_REQUEST,
}

_QUESTION_KEYS = ("question", "prompt", "text", "message")
_SUMMARY_KEYS = ("summary", "text", "message", "details")
_STEPS_KEYS = ("steps", "items", "instructions")
_TITLE_KEYS = ("title", "heading")


class _ToolCallBase(BaseModel):
    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    passive: bool = False


class UpsertSlots(_ToolCallBase):
    tool: Literal["upsert_request_slots"] = UPSERT_SLOTS


class AskUser(_ToolCallBase):
    tool: Literal["ask_user"] = ASK_USER
    question: Optional[str] = None


class GuideUser(_ToolCallBase):
    tool: Literal["guide_user"] = GUIDE_USER
    title: Optional[str] = None
    steps: List[str] = Field(default_factory=list)


class Confirm(_ToolCallBase):
    tool: Literal["confirm"] = CONFIRM
    summary: str = ""


class StartRequest(_ToolCallBase):
    tool: Literal["start_request"] = START_REQUEST


class UnknownTool(_ToolCallBase):
    tool: Literal["unknown"] = "unknown"


ToolCall = Union[UpsertSlots, AskUser, GuideUser, Confirm, StartRequest, UnknownTool]


def _first_text(args: Dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _steps(args: Dict[str, Any]) -> List[str]:
    for key in _STEPS_KEYS:
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            lines = [line.strip() for line in value.splitlines()]
            return [re.sub(r"^(?:\d+[.)]|[-*•])\s*", "", line) for line in lines if line]
        if isinstance(value, list):
            steps = []
            for item in value:
                if isinstance(item, dict):
                    item = item.get("text") or item.get("step") or item.get("title")
                if item is not None and str(item).strip():
                    steps.append(str(item).strip())
            return steps
    return []


def canonical_tool_name(name: str) -> str:
    key = (name or "").strip().lower().replace("-", "_")
    return _NAME_ALIASES.get(key, key)


def decode_tool_call(request: ToolCallRequest) -> ToolCall:
    args = request.arguments if isinstance(request.arguments, dict) else {}
    base = {"call_id": request.call_id, "name": request.name, "args": args, "passive": request.passive}
    tool = canonical_tool_name(request.name)
    if tool == UPSERT_SLOTS:
        return UpsertSlots(**base)
    if tool == ASK_USER:
        return AskUser(question=_first_text(args, _QUESTION_KEYS), **base)
    if tool == GUIDE_USER:
        return GuideUser(title=_first_text(args, _TITLE_KEYS), steps=_steps(args), **base)
    if tool == CONFIRM:
        return Confirm(summary=_first_text(args, _SUMMARY_KEYS) or "", **base)
    if tool == START_REQUEST:
        return StartRequest(**base)
    return UnknownTool(**base)
