from __future__ import annotations

import re
from contextlib import nullcontext
from typing import Any, Awaitable, Callable, Dict, Optional

import logging
from word2number import w2n

from reservation_agent.logging.flight_recorder import FlightRecorder
from reservation_agent.models.slots import BOOKING, SlotState
from reservation_agent.models.tool_calls import (
    ASK_USER,
    CONFIRM,
    GUIDE_USER,
    START_REQUEST,
    UPSERT_SLOTS,
    AskUser,
    Confirm,
    GuideUser,
    StartRequest,
    ToolCall,
    UpsertSlots,
)
from reservation_agent.models.turns import ToolOutcome, TurnState
from reservation_agent.services.call_dispatcher import CallDispatcher
from reservation_agent.services.datetime_parser import (
    DateTimeParser,
    add_minutes,
    parse_time_range,
    pretty_date,
    pretty_range,
    to_24h,
)
from reservation_agent.services.phone import assign_phone, find_trailing_phone
from reservation_agent.services.places import DestinationPhoneResolver
from reservation_agent.services.slot_normalizer import apply_datetime_hints, normalize, normalize_state
from reservation_agent.services.validation import FIELD_PROMPTS, question_for_missing, validate_reservation

logger = logging.getLogger(__name__)

Handler = Callable[[Any, SlotState, Optional[FlightRecorder]], Awaitable[ToolOutcome]]

_NUMBER_WORDS = (
    "one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve|thirteen|"
    "fourteen|fifteen|sixteen|seventeen|eighteen|nineteen|twenty"
)
# "for 4" or "party of four", but not "for 7pm" / "for 7:30".
_PARTY_RE = re.compile(
    rf"\b(?:party of|table for|party:|party size:?|guests:?|for)\s+(\d{{1,2}}|{_NUMBER_WORDS})\b"
    r"(?!\s*(?::\d|[ap]\.?m\b|o'?clock))"
)


def _party_from_summary(summary: str) -> Optional[int]:
    match = _PARTY_RE.search(summary.lower())
    if not match:
        return None
    raw = match.group(1)
    return int(raw) if raw.isdigit() else w2n.word_to_num(raw)


class ToolDispatcher:
    def __init__(
        self,
        parser: DateTimeParser,
        resolver: DestinationPhoneResolver,
        call_dispatcher: CallDispatcher,
    ) -> None:
        self.parser = parser
        self.resolver = resolver
        self.call_dispatcher = call_dispatcher
        self.registry: Dict[str, Handler] = {
            UPSERT_SLOTS: self._wrap(self._upsert_slots),
            ASK_USER: self._wrap(self._ask_user),
            GUIDE_USER: self._wrap(self._guide_user),
            CONFIRM: self._wrap(self._confirm),
            START_REQUEST: self._wrap(self._start_request),
        }

    def _wrap(self, func: Handler) -> Handler:
        async def wrapped(call: Any, state: SlotState, recorder: Optional[FlightRecorder]) -> ToolOutcome:
            logger.info("tool.call tool=%s call_id=%s passive=%s", call.tool, call.call_id, call.passive)
            return await func(call, state, recorder)

        return wrapped

    async def dispatch(self, call: ToolCall, state: SlotState, recorder: Optional[FlightRecorder] = None) -> ToolOutcome:
        handler = self.registry.get(call.tool)
        if handler is None:
            logger.warning("tool.unknown name=%s", call.name)
            return ToolOutcome(state=state, output={"error": "unknown_tool", "name": call.name})
        return await handler(call, state, recorder)

    async def _upsert_slots(self, call: UpsertSlots, state: SlotState, recorder: Optional[FlightRecorder]) -> ToolOutcome:
        updated = normalize_state(state, call.args, self.parser)
        if updated.details.get("destinationPhone") != state.details.get("destinationPhone"):
            updated.ui.expecting_dest_phone = False
        return ToolOutcome(state=updated, output={"ok": True, "slots": updated.snapshot()})

    async def _ask_user(self, call: AskUser, state: SlotState, recorder: Optional[FlightRecorder]) -> ToolOutcome:
        question = call.question
        if not question and state.mode == BOOKING:
            question = question_for_missing(validate_reservation(state.details))
        question = question or "Could you tell me a little more about what you're looking for?"
        return ToolOutcome(
            state=state,
            output={"ok": True, "asked": question},
            display=question,
            halt=True,
            final_state=TurnState.AWAITING_USER,
        )

    async def _guide_user(self, call: GuideUser, state: SlotState, recorder: Optional[FlightRecorder]) -> ToolOutcome:
        lines = [call.title] if call.title else []
        lines.extend(f"{index}. {step}" for index, step in enumerate(call.steps, start=1))
        display = "\n".join(lines) or None
        return ToolOutcome(state=state, output={"ok": True, "steps": len(call.steps)}, display=display)

    async def _confirm(self, call: Confirm, state: SlotState, recorder: Optional[FlightRecorder]) -> ToolOutcome:
        summary = call.summary
        extracted: Dict[str, Any] = {}

        party = _party_from_summary(summary)
        if party:
            extracted["partySize"] = party

        phone = find_trailing_phone(summary)
        if phone:
            extracted[assign_phone(summary, state.details, state.ui.expecting_dest_phone)] = phone

        # Prefer the written calendar date over any weekday name next to it.
        found_date = self.parser.parse_date(summary, allow_relative=False) or self.parser.parse_date(summary)
        if found_date:
            extracted["date"] = found_date

        window = parse_time_range(summary)
        if window:
            extracted["timeWindowStart"], extracted["timeWindowEnd"] = window
        else:
            start = to_24h(summary)
            if start:
                extracted["timeWindowStart"] = start
                extracted["timeWindowEnd"] = add_minutes(start, 30)

        updated = state.model_copy(deep=True)
        updated.details = normalize(state.details, extracted, self.parser)
        if "destinationPhone" in extracted:
            updated.ui.expecting_dest_phone = False
        display = summary or _describe(updated.details)
        return ToolOutcome(
            state=updated,
            output={"ok": True, "extracted": sorted(extracted), "slots": updated.snapshot()},
            display=display,
        )

    async def _start_request(self, call: StartRequest, state: SlotState, recorder: Optional[FlightRecorder]) -> ToolOutcome:
        updated = normalize_state(state, call.args, self.parser)
        details = apply_datetime_hints(updated.details, updated.desired_start, updated.desired_end, self.parser)
        if details.get("date"):
            reparsed = self.parser.parse_date(str(details["date"]))
            if reparsed:
                details["date"] = reparsed
            else:
                details.pop("date")
        updated.details = details

        missing = validate_reservation(details)
        if missing:
            logger.info("tool.start_request.missing fields=%s", missing)
            return ToolOutcome(
                state=updated,
                output={"error": "missing_required_slots", "missing": missing},
                display=question_for_missing(missing),
                halt=True,
                final_state=TurnState.AWAITING_USER,
            )

        with _stage(recorder, "LOOKUP", restaurant=details.get("restaurantName")):
            phone = await self.resolver.resolve(details)
        if not phone:
            updated.ui.expecting_dest_phone = True
            return ToolOutcome(
                state=updated,
                output={"error": "missing_destination_phone", "missing": ["destinationPhone"]},
                display=FIELD_PROMPTS["destinationPhone"],
                halt=True,
                final_state=TurnState.AWAITING_USER,
            )
        details["destinationPhone"] = phone
        # Assignment stores a copy, so hand the finished details back to the state.
        updated.details = details
        updated.ui.expecting_dest_phone = False

        with _stage(recorder, "DISPATCH", target_phone=phone):
            result = await self.call_dispatcher.dispatch(details)

        if result.queued:
            display = (
                f"Calling {details['restaurantName']} now for {details['partySize']} on "
                f"{pretty_date(details['date'])}, {pretty_range(details['timeWindowStart'], details['timeWindowEnd'])}. "
                "I'll let you know what they say."
            )
            final_state = TurnState.CALL_DISPATCHED
        else:
            display = f"I couldn't place the call ({result.error}). Want me to try again?"
            final_state = TurnState.ERROR
        return ToolOutcome(
            state=updated,
            output=result.to_tool_output(),
            display=display,
            halt=True,
            final_state=final_state,
            dispatch=result,
        )


def _stage(recorder: Optional[FlightRecorder], stage: str, **metadata: Any):
    return recorder.stage(stage, **metadata) if recorder else nullcontext()


def _describe(details: Dict[str, Any]) -> str:
    parts = []
    if details.get("restaurantName"):
        parts.append(str(details["restaurantName"]))
    if details.get("partySize"):
        parts.append(f"party of {details['partySize']}")
    if details.get("date"):
        parts.append(pretty_date(details["date"]))
    if details.get("timeWindowStart"):
        parts.append(pretty_range(details["timeWindowStart"], details.get("timeWindowEnd")))
    return "Here's what I have: " + ", ".join(parts) + "." if parts else "Here's what I have so far."
