from __future__ import annotations

from typing import Optional

import logging
import httpx
from pydantic import ValidationError

from reservation_agent.config import Settings
from reservation_agent.models.calls import CallRecord

logger = logging.getLogger(__name__)


class CallStatusClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base = settings.functions_base.rstrip("/")
        self.headers = settings.auth_headers()
        self.timeout = settings.http_timeout_seconds
        self._transport = transport

    async def fetch(self, call_id: str) -> Optional[CallRecord]:
        """Load the stored row for a dispatched call. None when unknown or unreachable."""
        if not self.base:
            logger.warning("call_status.not_configured call_id=%s", call_id)
            return None
        url = f"{self.base}/call-status"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=5.0), transport=self._transport
            ) as client:
                response = await client.get(url, params={"id": call_id}, headers=self.headers)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("call_status.error call_id=%s err=%s", call_id, exc)
            return None
        row = data.get("call") if isinstance(data, dict) and isinstance(data.get("call"), dict) else data
        if not isinstance(row, dict):
            return None
        try:
            return CallRecord.model_validate(row)
        except ValidationError as exc:
            logger.warning("call_status.bad_row call_id=%s err=%s", call_id, exc)
            return None
