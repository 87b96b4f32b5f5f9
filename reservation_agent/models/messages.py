from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant", "tool"]


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Role
    content: str = ""
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = Field(default=None, alias="name")
    tool_calls: Optional[List[Dict[str, Any]]] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ToolCallRequest(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    call_id: str
    # Slot-set annotations ride along with prose and expect no tool result.
    passive: bool = False
    raw: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        if self.raw is not None:
            return self.raw
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


class ToolCallResult(BaseModel):
    call_id: str
    name: str
    output: Dict[str, Any]

    def to_message(self) -> Message:
        return Message(
            role="tool",
            content=json.dumps(self.output, default=str),
            tool_call_id=self.call_id,
            tool_name=self.name,
        )


class BrainReply(BaseModel):
    content: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    slots: Optional[Dict[str, Any]] = None

    @property
    def active_calls(self) -> List[ToolCallRequest]:
        return [call for call in self.tool_calls if not call.passive]

    @property
    def passive_calls(self) -> List[ToolCallRequest]:
        return [call for call in self.tool_calls if call.passive]

    def to_protocol_message(self) -> Message:
        active = self.active_calls
        return Message(
            role="assistant",
            content=self.content,
            tool_calls=[call.to_wire() for call in active] or None,
        )
