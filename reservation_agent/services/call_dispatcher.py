from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import logging
import httpx

from reservation_agent.config import Settings
from reservation_agent.logging.flight_recorder import redact_phone
from reservation_agent.models.calls import CallRequest, DispatchResult
from reservation_agent.services.datetime_parser import pretty_date, pretty_range

logger = logging.getLogger(__name__)

ALTERNATIVE_WINDOW_MINUTES = 60


class CallNowClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base = settings.functions_base.rstrip("/")
        self.headers = settings.auth_headers()
        self.timeout = settings.http_timeout_seconds
        self.source = settings.call_source
        self._transport = transport

    async def call_now(self, request: CallRequest) -> Dict[str, Any]:
        if not self.base:
            logger.warning("call_now.not_configured target=%s", request.target_name)
            return {"ok": False, "error": "call_endpoint_not_configured"}

        url = f"{self.base}/call-now"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=5.0), transport=self._transport
            ) as client:
                response = await client.post(url, json=request.to_payload(self.source), headers=self.headers)
            try:
                data = response.json()
            except ValueError:
                data = {}
            if response.is_error:
                error = data.get("error") if isinstance(data, dict) else None
                return {"ok": False, "error": error or f"HTTP {response.status_code}"}
            if not isinstance(data, dict):
                return {"ok": False, "error": "unexpected_response"}
            logger.info("call_now.sent to=%s call_id=%s", redact_phone(request.target_phone), data.get("callId"))
            return data
        except httpx.HTTPError as exc:
            logger.exception("call_now.error to=%s err=%s", redact_phone(request.target_phone), exc)
            return {"ok": False, "error": str(exc) or exc.__class__.__name__}


def build_call_request(details: Mapping[str, Any]) -> CallRequest:
    """Compose the notes and agent script for an outbound reservation call."""
    name = str(details["restaurantName"])
    party = details["partySize"]
    when_date = pretty_date(details.get("date"))
    window = pretty_range(details.get("timeWindowStart"), details.get("timeWindowEnd"))
    requests = details.get("specialRequests")
    callback = details.get("userPhone")

    notes = f"Reservation for {party} on {when_date}, {window}."
    if requests:
        notes += f" Requests: {requests}."
    if callback:
        notes += f" Callback: {callback}."

    script_lines = [
        f"Hi, I'm calling to make a dinner reservation at {name}.",
        f"It's for a party of {party} on {when_date}, ideally between {window}.",
    ]
    if requests:
        script_lines.append(f"The guests also asked for: {requests}.")
    script_lines.append(
        "If that time isn't available, offer alternatives within "
        f"{ALTERNATIVE_WINDOW_MINUTES} minutes of the requested window."
    )
    script_lines.append(
        "Before hanging up, read back the confirmed date, time, party size and the name "
        "the reservation is under."
    )

    return CallRequest(
        target_name=name,
        target_phone=str(details["destinationPhone"]),
        notes=notes,
        script="\n".join(script_lines),
    )


class CallDispatcher:
    def __init__(self, client: CallNowClient) -> None:
        self.client = client

    async def dispatch(self, details: Mapping[str, Any]) -> DispatchResult:
        request = build_call_request(details)
        response = await self.client.call_now(request)
        if response.get("ok") is False or response.get("error"):
            logger.warning("dispatch.failed target=%s err=%s", request.target_name, response.get("error"))
            return DispatchResult(queued=False, error=str(response.get("error") or "call_failed"))
        call_id = response.get("callId") or response.get("id")
        logger.info("dispatch.queued target=%s call_id=%s", request.target_name, call_id)
        return DispatchResult(queued=True, call_id=str(call_id) if call_id else None)
