import json

import pytest

from reservation_agent.models.turns import TurnState
from reservation_agent.services.brain import BrainMalformedReply, BrainTransportError
from reservation_agent.services.orchestrator import BRAIN_ERROR_MESSAGE, GREETING
from reservation_agent.services.validation import FIELD_PROMPTS
from conftest import FakeBrain, FakeCallClient, FakePlaces, reply, tool


def _tool_results(session):
    return {
        message.tool_call_id: json.loads(message.content)
        for message in session.orchestrator.protocol
        if message.role == "tool"
    }


@pytest.mark.asyncio
async def test_via_carota_request_dispatches_exactly_once(make_session):
    brain = FakeBrain(
        reply(
            "",
            tool("upsert_request_slots", "c1", restaurantName="Via Carota", partySize=2, date="friday", time="7pm"),
            tool("start_request", "c2"),
        )
    )
    calls = FakeCallClient()
    session = make_session(brain, call_client=calls)

    outcome = await session.send("Book Via Carota for 2 this Friday at 7pm")

    assert outcome.state == TurnState.CALL_DISPATCHED
    assert len(calls.requests) == 1
    request = calls.requests[0]
    assert request.target_name == "Via Carota"
    assert request.target_phone == "+12125550147"
    assert session.orchestrator.slots.details["destinationPhone"] == "+12125550147"
    assert outcome.dispatch.call_id == "call-123"
    assert session.orchestrator.last_call_id == "call-123"
    assert outcome.replies[-1].startswith("Calling Via Carota now for 2 on Fri, Nov 8")
    assert _tool_results(session)["c2"] == {"queued": True, "callId": "call-123"}
    assert len(brain.requests) == 1


@pytest.mark.asyncio
async def test_missing_party_size_blocks_dispatch(make_session):
    brain = FakeBrain(
        reply(
            "",
            tool("upsert_request_slots", "c1", restaurantName="Via Carota", date="2024-11-08", time="19:00"),
            tool("start_request", "c2"),
        )
    )
    calls = FakeCallClient()
    session = make_session(brain, call_client=calls)

    outcome = await session.send("Book Via Carota on Nov 8 at 7pm")

    assert outcome.state == TurnState.AWAITING_USER
    assert calls.requests == []
    assert _tool_results(session)["c2"] == {"error": "missing_required_slots", "missing": ["partySize"]}
    assert outcome.replies == [FIELD_PROMPTS["partySize"]]


@pytest.mark.asyncio
async def test_ask_user_halts_and_skips_remaining_calls(make_session):
    brain = FakeBrain(
        reply("", tool("ask_user", "c1", question="What time works?"), tool("upsert_request_slots", "c2", partySize=3))
    )
    session = make_session(brain)

    outcome = await session.send("Book a table at Via Carota")

    assert outcome.state == TurnState.AWAITING_USER
    assert outcome.replies == ["What time works?"]
    results = _tool_results(session)
    assert results["c1"]["asked"] == "What time works?"
    assert results["c2"] == {"status": "skipped", "reason": "halted"}
    assert "partySize" not in session.orchestrator.slots.details
    assert len(brain.requests) == 1


@pytest.mark.asyncio
async def test_ask_user_without_question_asks_for_missing_field(make_session):
    brain = FakeBrain(
        reply(
            "",
            tool("upsert_request_slots", "c1", restaurantName="Via Carota", partySize=2, date="friday", time="7pm"),
            tool("ask_user", "c2"),
        )
    )
    session = make_session(brain)

    outcome = await session.send("book it")

    assert outcome.replies == ["Anything else you'd like me to add before I call?"]


@pytest.mark.asyncio
async def test_tool_results_reach_the_brain_before_the_next_call(make_session):
    brain = FakeBrain(reply("", tool("make_coffee", "c1")), reply("Sorry, I can't do that one."))
    session = make_session(brain)

    outcome = await session.send("make me a coffee")

    assert outcome.state == TurnState.AWAITING_USER
    assert outcome.replies == ["Sorry, I can't do that one."]
    second = brain.requests[1]["messages"]
    assert [message["role"] for message in second] == ["user", "assistant", "tool"]
    assert second[-1]["tool_call_id"] == "c1"
    assert json.loads(second[-1]["content"])["error"] == "unknown_tool"


@pytest.mark.asyncio
async def test_greeting_is_displayed_but_not_sent(make_session):
    brain = FakeBrain(reply("Hello!"))
    session = make_session(brain)

    await session.send("hi")

    assert session.orchestrator.display[0].content == GREETING
    assert brain.requests[0]["messages"] == [{"role": "user", "content": "hi"}]
    assert [message.content for message in session.orchestrator.display] == [GREETING, "hi", "Hello!"]


@pytest.mark.asyncio
async def test_transport_error_ends_turn_in_error_and_is_retryable(make_session):
    brain = FakeBrain(BrainTransportError("HTTP 503"), reply("Back online."))
    session = make_session(brain)

    failed = await session.send("hi there")
    assert failed.state == TurnState.ERROR
    assert failed.replies == [BRAIN_ERROR_MESSAGE]
    assert failed.error == "HTTP 503"

    retried = await session.send("hi again")
    assert retried.state == TurnState.AWAITING_USER
    assert retried.replies == ["Back online."]


@pytest.mark.asyncio
async def test_malformed_reply_is_treated_as_empty(make_session):
    brain = FakeBrain(BrainMalformedReply("not json"))
    session = make_session(brain)

    outcome = await session.send("hello")

    assert outcome.state == TurnState.AWAITING_USER
    assert outcome.replies == []
    assert [message.role for message in session.orchestrator.protocol] == ["user"]


@pytest.mark.asyncio
async def test_unknown_destination_phone_is_asked_for_then_used(make_session):
    brain = FakeBrain(
        reply(
            "",
            tool("upsert_request_slots", "c1", restaurantName="Lupa", partySize=4, date="tomorrow", time="8pm"),
            tool("start_request", "c2"),
        ),
        reply("", tool("start_request", "c3")),
    )
    calls = FakeCallClient()
    session = make_session(brain, call_client=calls)

    first = await session.send("Book Lupa for 4 tomorrow at 8pm")
    assert first.state == TurnState.AWAITING_USER
    assert first.replies == [FIELD_PROMPTS["destinationPhone"]]
    assert _tool_results(session)["c2"] == {"error": "missing_destination_phone", "missing": ["destinationPhone"]}
    assert session.orchestrator.slots.ui.expecting_dest_phone is True

    second = await session.send("212 555 0199")
    assert second.state == TurnState.CALL_DISPATCHED
    assert calls.requests[0].target_phone == "+12125550199"
    assert session.orchestrator.slots.details.get("userPhone") is None
    assert session.orchestrator.slots.ui.expecting_dest_phone is False


@pytest.mark.asyncio
async def test_place_lookup_supplies_destination_phone(make_session):
    brain = FakeBrain(
        reply(
            "",
            tool(
                "upsert_request_slots",
                "c1",
                restaurantName="Gjusta",
                placeId="pl-1",
                partySize=2,
                date="saturday",
                time="11am",
            ),
            tool("start_request", "c2"),
        )
    )
    calls = FakeCallClient()
    places = FakePlaces({"pl-1": "+13105550100"})
    session = make_session(brain, call_client=calls, places=places)

    outcome = await session.send("Book Gjusta for brunch")

    assert outcome.state == TurnState.CALL_DISPATCHED
    assert places.lookups == ["pl-1"]
    assert calls.requests[0].target_phone == "+13105550100"
    assert session.orchestrator.slots.details["destinationPhone"] == "+13105550100"


@pytest.mark.asyncio
async def test_failed_call_ends_in_error(make_session):
    brain = FakeBrain(
        reply(
            "",
            tool("upsert_request_slots", "c1", restaurantName="Via Carota", partySize=2, date="friday", time="7pm"),
            tool("start_request", "c2"),
        )
    )
    session = make_session(brain, call_client=FakeCallClient({"ok": False, "error": "line busy"}))

    outcome = await session.send("book it")

    assert outcome.state == TurnState.ERROR
    assert outcome.dispatch.queued is False
    assert "line busy" in outcome.replies[-1]


@pytest.mark.asyncio
async def test_user_phone_is_captured_from_user_text(make_session):
    brain = FakeBrain(reply("Thanks!"), reply("Noted."))
    session = make_session(brain)

    await session.send("My number is 646-555-9876")
    assert session.orchestrator.slots.details["userPhone"] == "+16465559876"
    assert brain.requests[0]["slots"]["details"]["userPhone"] == "+16465559876"

    await session.send("again, 646-555-9876")
    assert "destinationPhone" not in session.orchestrator.slots.details


@pytest.mark.asyncio
async def test_mode_only_moves_toward_booking(make_session):
    brain = FakeBrain(reply("Sure."), reply("Okay."), reply("Okay."))
    session = make_session(brain)

    await session.send("what's good near the village?")
    assert session.orchestrator.slots.mode == "discovery"
    await session.send("let's do Via Carota")
    assert session.orchestrator.slots.mode == "booking"
    await session.send("just browsing actually")
    assert session.orchestrator.slots.mode == "booking"


@pytest.mark.asyncio
async def test_discovery_guard_applies_to_prose(make_session):
    brain = FakeBrain(reply("How many people will be joining you?"))
    session = make_session(brain)

    outcome = await session.send("somewhere fun for dinner")

    assert outcome.replies[0].startswith("Happy to help you find a spot")
    assert session.orchestrator.slots.kind == "restaurant"


@pytest.mark.asyncio
async def test_confirm_summary_fills_slots_and_continues(make_session):
    summary = "Via Carota, party of 4, Fri, Nov 15 at 7:30 pm. Callback 646-555-9876"
    brain = FakeBrain(reply("", tool("confirm", "c1", summary=summary)), reply("Shall I call them?"))
    session = make_session(brain)

    outcome = await session.send("yes that's right")

    details = session.orchestrator.slots.details
    assert details["partySize"] == 4
    assert details["date"] == "2024-11-15"
    assert (details["timeWindowStart"], details["timeWindowEnd"]) == ("19:30", "20:00")
    assert details["userPhone"] == "+16465559876"
    assert outcome.replies == [summary, "Shall I call them?"]
    assert len(brain.requests) == 2


@pytest.mark.asyncio
async def test_guide_user_renders_numbered_steps(make_session):
    brain = FakeBrain(
        reply("", tool("guide_user", "c1", title="Before you go", steps=["Bring ID", "Arrive early"])),
        reply("Anything else?"),
    )
    session = make_session(brain)

    outcome = await session.send("what should I know?")

    assert outcome.replies[0] == "Before you go\n1. Bring ID\n2. Arrive early"


@pytest.mark.asyncio
async def test_annotations_update_slots_without_tool_results(make_session):
    from reservation_agent.models.messages import ToolCallRequest

    passive = ToolCallRequest(name="slot_set", arguments={"partySize": 2}, call_id="a1", passive=True)
    brain = FakeBrain(reply("Two it is.", passive))
    session = make_session(brain)

    outcome = await session.send("just the two of us")

    assert outcome.state == TurnState.AWAITING_USER
    assert session.orchestrator.slots.details["partySize"] == 2
    assert [message.role for message in session.orchestrator.protocol] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_brain_slots_are_merged(make_session):
    brain = FakeBrain(reply("Booking mode.", slots={"mode": "booking", "details": {"restaurantName": "Carbone"}}))
    session = make_session(brain)

    await session.send("hello")

    assert session.orchestrator.slots.mode == "booking"
    assert session.orchestrator.slots.details["restaurantName"] == "Carbone"


@pytest.mark.asyncio
async def test_tool_rounds_are_bounded(make_session, settings):
    script = [reply("", tool("guide_user", f"c{i}", steps=["again"])) for i in range(10)]
    brain = FakeBrain(*script)
    session = make_session(brain)

    outcome = await session.send("loop forever")

    assert outcome.state == TurnState.AWAITING_USER
    assert len(brain.requests) == settings.max_tool_rounds


@pytest.mark.asyncio
async def test_busy_session_rejects_overlapping_sends(make_session):
    brain = FakeBrain(reply("One at a time."))
    session = make_session(brain)

    assert session.handle_send("first") is True
    assert session.busy is True
    assert session.handle_send("second") is False

    task = next(iter(session._tasks))
    await task
    assert session.busy is False
    assert session.last_outcome.replies == ["One at a time."]
    assert len(brain.requests) == 1


@pytest.mark.asyncio
async def test_restaurant_names_with_weekday_abbreviations_keep_the_date(make_session):
    brain = FakeBrain(reply("Noted."), reply("Sure."))
    session = make_session(brain)

    await session.send("book it for Nov 15")
    assert session.orchestrator.slots.details["date"] == "2024-11-15"

    await session.send("actually let's go with Mon Ami Gabi instead")
    assert session.orchestrator.slots.details["date"] == "2024-11-15"


@pytest.mark.asyncio
async def test_confirm_with_destination_number_clears_the_prompt(make_session):
    brain = FakeBrain(
        reply(
            "",
            tool("upsert_request_slots", "c1", restaurantName="Lupa", partySize=4, date="tomorrow", time="8pm"),
            tool("start_request", "c2"),
        ),
        reply("", tool("confirm", "c3", summary="Lupa for 4, call them at 212 555 0199")),
        reply("Shall I call?"),
    )
    session = make_session(brain)

    await session.send("Book Lupa for 4 tomorrow at 8pm")
    assert session.orchestrator.slots.ui.expecting_dest_phone is True

    await session.send("that's right")
    slots = session.orchestrator.slots
    assert slots.details["destinationPhone"] == "+12125550199"
    assert slots.ui.expecting_dest_phone is False


def test_send_outside_event_loop_leaves_session_idle(make_session):
    session = make_session(FakeBrain())

    with pytest.raises(RuntimeError):
        session.handle_send("hello")

    assert session.busy is False
    assert session._tasks == set()
