import json

import httpx
import pytest

from reservation_agent.models.messages import Message
from reservation_agent.models.slots import SlotState
from reservation_agent.services.brain import (
    BrainClient,
    BrainMalformedReply,
    BrainTransportError,
    parse_brain_reply,
)


def _client(settings, handler):
    return BrainClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_request_carries_transcript_slots_and_auth(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"ok": True, "message": {"role": "assistant", "content": "Hi!"}})

    slots = SlotState(mode="booking", desired_start="2024-11-08T19:00:00-05:00")
    reply = await _client(settings, handler).respond(
        [Message(role="user", content="hello")], slots, thread_id="t-1", request_id="r-1"
    )

    assert reply.content == "Hi!"
    assert seen["auth"] == "Bearer anon-key"
    assert seen["body"]["messages"] == [{"role": "user", "content": "hello"}]
    assert seen["body"]["slots"]["desiredStart"] == "2024-11-08T19:00:00-05:00"
    assert seen["body"]["slots"]["ui"] == {"expectingDestPhone": False}
    assert seen["body"]["threadId"] == "t-1"
    assert seen["body"]["requestId"] == "r-1"


@pytest.mark.asyncio
async def test_ok_false_is_a_transport_error(settings):
    client = _client(settings, lambda request: httpx.Response(200, json={"ok": False, "error": "quota"}))
    with pytest.raises(BrainTransportError, match="quota"):
        await client.respond([], SlotState())


@pytest.mark.asyncio
async def test_server_error_is_a_transport_error(settings):
    client = _client(settings, lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(BrainTransportError, match="502"):
        await client.respond([], SlotState())


@pytest.mark.asyncio
async def test_network_failure_is_a_transport_error(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BrainTransportError):
        await _client(settings, handler).respond([], SlotState())


@pytest.mark.asyncio
async def test_non_json_reply_is_malformed(settings):
    client = _client(settings, lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(BrainMalformedReply):
        await client.respond([], SlotState())


def test_openai_tool_calls_keep_their_wire_form():
    raw = {
        "id": "call_abc",
        "type": "function",
        "function": {"name": "upsert_request_slots", "arguments": "{\"partySize\": 2}"},
    }
    reply = parse_brain_reply({"ok": True, "message": {"content": None, "tool_calls": [raw]}})

    assert reply.content == ""
    [call] = reply.tool_calls
    assert call.name == "upsert_request_slots"
    assert call.arguments == {"partySize": 2}
    assert call.call_id == "call_abc"
    assert reply.to_protocol_message().tool_calls == [raw]


def test_generated_call_id_is_replayed_with_the_call():
    raw = {"type": "function", "function": {"name": "start_request", "arguments": "{}"}}
    reply = parse_brain_reply({"ok": True, "message": {"tool_calls": [raw]}})

    [call] = reply.tool_calls
    assert call.call_id
    assert reply.to_protocol_message().tool_calls[0]["id"] == call.call_id
    assert "id" not in raw


def test_object_arguments_are_accepted():
    reply = parse_brain_reply(
        {"message": {"tool_calls": [{"id": "c1", "function": {"name": "ask_user", "arguments": {"question": "When?"}}}]}}
    )
    assert reply.tool_calls[0].arguments == {"question": "When?"}


def test_slot_annotations_become_one_passive_upsert():
    reply = parse_brain_reply(
        {
            "ok": True,
            "message": {
                "content": "Got it.",
                "annotations": [
                    {"type": "slot_set", "key": "partySize", "value": 2},
                    {"type": "slot_set", "key": "restaurantName", "value": "Via Carota"},
                ],
            },
        }
    )
    assert reply.active_calls == []
    [passive] = reply.passive_calls
    assert passive.name == "upsert_request_slots"
    assert passive.arguments == {"partySize": 2, "restaurantName": "Via Carota"}
    assert reply.to_protocol_message().tool_calls is None


def test_tool_requests_and_tool_call_annotations_are_active():
    reply = parse_brain_reply(
        {
            "ok": True,
            "annotations": [{"type": "tool_call", "name": "confirm", "args": {"summary": "Party of 2"}}],
            "toolRequests": [{"name": "start_request", "args": {}}],
            "slots": {"mode": "booking"},
        }
    )
    assert [call.name for call in reply.active_calls] == ["confirm", "start_request"]
    assert reply.slots == {"mode": "booking"}


def test_messages_delta_supplies_content():
    reply = parse_brain_reply({"ok": True, "messagesDelta": [{"role": "assistant", "content": "Sure thing."}]})
    assert reply.content == "Sure thing."


def test_schema_violations_are_malformed():
    with pytest.raises(BrainMalformedReply):
        parse_brain_reply({"message": "just text"})
    with pytest.raises(BrainMalformedReply):
        parse_brain_reply({"message": {"tool_calls": [{"function": {"arguments": "{}"}}]}})
