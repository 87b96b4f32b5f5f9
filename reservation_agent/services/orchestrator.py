"""Turn state machine for the reservation conversation.

One user utterance runs as one turn: opportunistic capture, then a loop of
brain call and tool execution until a tool halts the turn, the brain answers
with prose only, or the round limit is hit. Tool results always land in the
protocol transcript before the brain is called again.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

import logging

from reservation_agent.config import Settings
from reservation_agent.logging.flight_recorder import FlightRecorder
from reservation_agent.models.calls import DispatchResult
from reservation_agent.models.messages import BrainReply, Message, ToolCallResult
from reservation_agent.models.slots import SlotState
from reservation_agent.models.tool_calls import decode_tool_call
from reservation_agent.models.turns import TurnOutcome, TurnState
from reservation_agent.services.brain import BrainClient, BrainMalformedReply, BrainTransportError
from reservation_agent.services.datetime_parser import DateTimeParser
from reservation_agent.services.intent import classify_mode, detect_kind, guard_discovery_reply
from reservation_agent.services.phone import assign_phone, find_phone
from reservation_agent.services.slot_normalizer import normalize, normalize_state
from reservation_agent.services.tool_dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

GREETING = (
    "Hi, I'm Jason. Tell me where you'd like to eat, or what you're in the mood for, "
    "and I can call to book it for you."
)
BRAIN_ERROR_MESSAGE = "Sorry, I hit a snag reaching my planner. Please try that again in a moment."
_SKIPPED = {"status": "skipped", "reason": "halted"}


class TurnOrchestrator:
    def __init__(
        self,
        settings: Settings,
        brain: BrainClient,
        tools: ToolDispatcher,
        parser: DateTimeParser,
        thread_id: Optional[str] = None,
    ) -> None:
        self.brain = brain
        self.tools = tools
        self.parser = parser
        self.max_tool_rounds = max(1, settings.max_tool_rounds)
        self.thread_id = thread_id or uuid.uuid4().hex
        self.slots = SlotState()
        self.state = TurnState.IDLE
        self.last_call: Optional[DispatchResult] = None
        # The greeting is shown to the user but never sent to the brain.
        self.display: List[Message] = [Message(role="assistant", content=GREETING)]
        self.protocol: List[Message] = []

    @property
    def last_call_id(self) -> Optional[str]:
        return self.last_call.call_id if self.last_call else None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "state": self.state.value,
            "slots": self.slots.snapshot(),
            "transcript": [message.to_wire() for message in self.display],
            "lastCallId": self.last_call_id,
        }

    async def handle_turn(self, text: str) -> TurnOutcome:
        text = (text or "").strip()
        if not text:
            return TurnOutcome(state=self.state, slots=self.slots.snapshot())

        recorder = FlightRecorder()
        replies: List[str] = []
        user_message = Message(role="user", content=text)
        self.display.append(user_message)
        self.protocol.append(user_message)

        with recorder.stage("CAPTURE", mode=self.slots.mode):
            self.slots = self._capture(text)

        dispatch: Optional[DispatchResult] = None
        for round_number in range(1, self.max_tool_rounds + 1):
            self.state = TurnState.AWAITING_BRAIN
            try:
                with recorder.stage("BRAIN", round=round_number):
                    reply = await self.brain.respond(self.protocol, self.slots, thread_id=self.thread_id)
            except BrainTransportError as exc:
                logger.warning("orchestrator.brain_failed thread=%s err=%s", self.thread_id, exc)
                self._say(BRAIN_ERROR_MESSAGE, replies)
                return self._finish(TurnState.ERROR, replies, error=str(exc))
            except BrainMalformedReply as exc:
                logger.warning("orchestrator.malformed_reply thread=%s err=%s", self.thread_id, exc)
                reply = BrainReply()

            active = reply.active_calls
            if reply.content or active:
                self.protocol.append(reply.to_protocol_message())
            if reply.slots:
                self.slots = normalize_state(self.slots, reply.slots, self.parser)
            for request in reply.passive_calls:
                outcome = await self.tools.dispatch(decode_tool_call(request), self.slots, recorder)
                self.slots = outcome.state

            if not active:
                content = guard_discovery_reply(reply.content, self.slots.mode, self.slots.details)
                if content:
                    self._say(content, replies)
                return self._finish(TurnState.AWAITING_USER, replies)

            if reply.content:
                self._say(reply.content, replies)

            self.state = TurnState.PROCESSING_TOOL_CALLS
            halted: Optional[TurnState] = None
            with recorder.stage("TOOLS", round=round_number, count=len(active)):
                for request in active:
                    call = decode_tool_call(request)
                    if halted is not None:
                        self._record_result(call.call_id, call.name, dict(_SKIPPED))
                        continue
                    outcome = await self.tools.dispatch(call, self.slots, recorder)
                    self.slots = outcome.state
                    self._record_result(call.call_id, call.name, outcome.output or {"ok": True})
                    if outcome.display:
                        self._say(outcome.display, replies)
                    if outcome.dispatch is not None:
                        dispatch = outcome.dispatch
                        self.last_call = outcome.dispatch
                    if outcome.halt:
                        halted = outcome.final_state or TurnState.AWAITING_USER
                        recorder.log("TOOLS", "halted", tool=call.tool, state=halted.value)
            if halted is not None:
                return self._finish(halted, replies, dispatch=dispatch)

        logger.warning("orchestrator.max_tool_rounds thread=%s rounds=%s", self.thread_id, self.max_tool_rounds)
        return self._finish(TurnState.AWAITING_USER, replies, dispatch=dispatch)

    def _capture(self, text: str) -> SlotState:
        """Apply what can be read straight off the user's words."""
        slots = self.slots.model_copy(deep=True)
        slots.mode = classify_mode(text, slots.mode)
        if not slots.kind:
            slots.kind = detect_kind(text)

        phone = find_phone(text)
        if phone and phone != slots.details.get("userPhone"):
            field_name = assign_phone(text, slots.details, slots.ui.expecting_dest_phone)
            slots.details = normalize(slots.details, {field_name: phone}, self.parser)
            if field_name == "destinationPhone":
                slots.ui.expecting_dest_phone = False
            logger.info("orchestrator.captured_phone field=%s", field_name)

        found_date = self.parser.parse_date(text)
        if found_date:
            slots.details = normalize(slots.details, {"date": found_date}, self.parser)
        return slots

    def _record_result(self, call_id: str, name: str, output: Dict[str, Any]) -> None:
        self.protocol.append(ToolCallResult(call_id=call_id, name=name, output=output).to_message())

    def _say(self, text: str, replies: List[str]) -> None:
        self.display.append(Message(role="assistant", content=text))
        replies.append(text)

    def _finish(
        self,
        state: TurnState,
        replies: List[str],
        dispatch: Optional[DispatchResult] = None,
        error: Optional[str] = None,
    ) -> TurnOutcome:
        self.state = state
        logger.info("orchestrator.turn_done thread=%s state=%s replies=%s", self.thread_id, state.value, len(replies))
        return TurnOutcome(
            state=state,
            replies=replies,
            slots=self.slots.snapshot(),
            dispatch=dispatch,
            error=error,
        )
