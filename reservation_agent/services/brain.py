"""HTTP client for the language-model brain endpoint.

The endpoint speaks two dialects for the same effects: OpenAI-style
``tool_calls`` on the assistant message, or ``annotations`` / ``toolRequests``
beside it. Both are folded into :class:`BrainReply`.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Optional, Sequence

import logging
import httpx

from reservation_agent.config import Settings
from reservation_agent.models.messages import BrainReply, Message, ToolCallRequest
from reservation_agent.models.slots import SlotState
from reservation_agent.models.tool_calls import UPSERT_SLOTS

logger = logging.getLogger(__name__)


class BrainError(Exception):
    pass


class BrainTransportError(BrainError):
    """Network failure, non-2xx status, or an explicit ``ok: false``."""


class BrainMalformedReply(BrainError):
    """The brain answered, but not with anything we can interpret."""


class BrainClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.url = settings.brain_url
        self.model = settings.brain_model
        self.timeout = settings.http_timeout_seconds
        self.headers = settings.auth_headers()
        self._transport = transport

    async def respond(
        self,
        messages: Sequence[Message],
        slots: SlotState,
        thread_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> BrainReply:
        if not self.url:
            raise BrainTransportError("brain_url is not configured")

        payload: Dict[str, Any] = {
            "messages": [message.to_wire() for message in messages],
            "slots": slots.snapshot(),
            "threadId": thread_id,
            "requestId": request_id or uuid.uuid4().hex,
        }
        if self.model:
            payload["model"] = self.model

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=5.0), transport=self._transport
            ) as client:
                response = await client.post(self.url, json=payload, headers=self.headers)
        except httpx.HTTPError as exc:
            logger.warning("brain.transport_error err=%s", exc)
            raise BrainTransportError(str(exc) or exc.__class__.__name__) from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            detail = data.get("error") if isinstance(data, dict) else None
            raise BrainTransportError(detail or f"HTTP {response.status_code}")
        if not isinstance(data, dict):
            raise BrainMalformedReply(f"non-JSON brain reply: {response.text[:200]!r}")
        if data.get("ok") is False:
            raise BrainTransportError(str(data.get("error") or "brain returned ok=false"))
        return parse_brain_reply(data)


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("brain.bad_tool_arguments raw=%s", raw[:200])
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _tool_calls_from_message(message: Dict[str, Any]) -> List[ToolCallRequest]:
    raw_calls = message.get("tool_calls")
    if raw_calls is None:
        return []
    if not isinstance(raw_calls, list):
        raise BrainMalformedReply("tool_calls is not a list")
    calls = []
    for index, raw in enumerate(raw_calls):
        if not isinstance(raw, dict):
            raise BrainMalformedReply("tool call entry is not an object")
        function = raw.get("function") if isinstance(raw.get("function"), dict) else raw
        name = function.get("name")
        if not isinstance(name, str) or not name:
            raise BrainMalformedReply("tool call without a name")
        arguments = _parse_arguments(function.get("arguments", function.get("args")))
        call_id = raw.get("id")
        if not call_id:
            # The replayed call must carry the id its tool result will answer.
            call_id = f"call_{index}_{uuid.uuid4().hex[:8]}"
            raw = {**raw, "id": call_id}
        call_id = str(call_id)
        calls.append(ToolCallRequest(name=name, arguments=arguments, call_id=call_id, raw=raw))
    return calls


def _tool_calls_from_annotations(annotations: Any) -> List[ToolCallRequest]:
    if not isinstance(annotations, list):
        return []
    slot_values: Dict[str, Any] = {}
    calls: List[ToolCallRequest] = []
    for item in annotations:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == "slot_set" and isinstance(item.get("key"), str):
            slot_values[item["key"]] = item.get("value")
        elif kind == "tool_call" and isinstance(item.get("name"), str):
            calls.append(
                ToolCallRequest(
                    name=item["name"],
                    arguments=_parse_arguments(item.get("args")),
                    call_id=f"ann_{uuid.uuid4().hex[:12]}",
                )
            )
    if slot_values:
        calls.insert(
            0,
            ToolCallRequest(
                name=UPSERT_SLOTS,
                arguments=slot_values,
                call_id=f"ann_{uuid.uuid4().hex[:12]}",
                passive=True,
            ),
        )
    return calls


def _tool_calls_from_requests(requests: Any) -> List[ToolCallRequest]:
    if not isinstance(requests, list):
        return []
    calls = []
    for item in requests:
        if isinstance(item, dict) and isinstance(item.get("name"), str):
            calls.append(
                ToolCallRequest(
                    name=item["name"],
                    arguments=_parse_arguments(item.get("args", item.get("arguments"))),
                    call_id=str(item.get("id") or f"req_{uuid.uuid4().hex[:12]}"),
                )
            )
    return calls


def parse_brain_reply(data: Dict[str, Any]) -> BrainReply:
    message = data.get("message")
    if message is not None and not isinstance(message, dict):
        raise BrainMalformedReply("message is not an object")
    message = message or {}

    content = message.get("content")
    if content is None and isinstance(data.get("messagesDelta"), list):
        content = "\n".join(
            str(item.get("content") or "")
            for item in data["messagesDelta"]
            if isinstance(item, dict) and item.get("role") == "assistant"
        )
    if content is not None and not isinstance(content, str):
        raise BrainMalformedReply("message content is not text")

    calls = _tool_calls_from_message(message)
    calls += _tool_calls_from_annotations(message.get("annotations"))
    calls += _tool_calls_from_annotations(data.get("annotations"))
    calls += _tool_calls_from_requests(data.get("toolRequests"))

    slots = data.get("slots") if isinstance(data.get("slots"), dict) else None
    return BrainReply(content=(content or "").strip(), tool_calls=calls, slots=slots)
