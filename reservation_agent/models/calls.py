from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CallRequest(BaseModel):
    target_name: str
    target_phone: str
    notes: str
    script: str

    def to_payload(self, source: str) -> Dict[str, Any]:
        return {
            "targetName": self.target_name,
            "targetPhone": self.target_phone,
            "notes": self.notes,
            "script": self.script,
            "source": source,
        }


class DispatchResult(BaseModel):
    queued: bool
    call_id: Optional[str] = None
    error: Optional[str] = None

    def to_tool_output(self) -> Dict[str, Any]:
        output: Dict[str, Any] = {"queued": self.queued}
        if self.call_id:
            output["callId"] = self.call_id
        if self.error:
            output["error"] = self.error
        return output


class CallRecord(BaseModel):
    """Row kept by the calling backend; enough to resume a call's status."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: str
    target_name: Optional[str] = None
    target_phone: str
    notes: Optional[str] = None
    vapi_call_id: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None)

    @property
    def is_finished(self) -> bool:
        return self.status in {"completed", "failed", "ended", "canceled"}
