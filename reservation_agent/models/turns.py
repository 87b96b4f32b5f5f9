from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from reservation_agent.models.calls import DispatchResult
from reservation_agent.models.slots import SlotState


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_BRAIN = "awaiting_brain"
    PROCESSING_TOOL_CALLS = "processing_tool_calls"
    AWAITING_USER = "awaiting_user"
    CALL_DISPATCHED = "call_dispatched"
    ERROR = "error"


@dataclass
class ToolOutcome:
    """What one tool call did: its protocol result, any user-facing text, and
    whether the turn stops here."""

    state: SlotState
    output: Optional[Dict[str, Any]] = None
    display: Optional[str] = None
    halt: bool = False
    final_state: Optional[TurnState] = None
    dispatch: Optional[DispatchResult] = None


@dataclass
class TurnOutcome:
    state: TurnState
    replies: List[str] = field(default_factory=list)
    slots: Dict[str, Any] = field(default_factory=dict)
    dispatch: Optional[DispatchResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "replies": list(self.replies),
            "slots": self.slots,
            "dispatch": self.dispatch.to_tool_output() if self.dispatch else None,
            "error": self.error,
        }
