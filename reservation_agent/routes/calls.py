from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from reservation_agent.config import get_settings
from reservation_agent.services.call_status import CallStatusClient

router = APIRouter()


def get_call_status_client() -> CallStatusClient:
    return CallStatusClient(get_settings())


@router.get("/{call_id}")
async def call_status(
    call_id: str,
    request: Request,
    client: CallStatusClient = Depends(get_call_status_client),
) -> Dict[str, Any]:
    with request.state.flight_recorder.stage("STATUS", call_id=call_id):
        record = await client.fetch(call_id)
    if record is None:
        raise HTTPException(status_code=404, detail="call not found")
    return {**record.model_dump(mode="json"), "finished": record.is_finished}
