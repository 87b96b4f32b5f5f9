from __future__ import annotations

from typing import Any, Dict, Optional

import logging
import httpx
from fastapi import APIRouter, Depends

from reservation_agent.config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def get_upstream_transport() -> Optional[httpx.AsyncBaseTransport]:
    return None


@router.get("/")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/upstream")
async def upstream_health(
    path: str = "health",
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_upstream_transport),
) -> Dict[str, Any]:
    """Ping one edge function so a deployment's base URL and keys can be checked."""
    if not settings.functions_base:
        return {"status": "unconfigured", "warnings": settings.validate_startup()}
    url = f"{settings.functions_base.rstrip('/')}/{path.lstrip('/')}"
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(8.0, connect=5.0), transport=transport) as client:
            response = await client.get(url, headers=settings.auth_headers())
    except httpx.TimeoutException:
        logger.warning("health.upstream_timeout url=%s", url)
        return {"status": "error", "url": url, "error": "timed out"}
    except httpx.HTTPError as exc:
        logger.warning("health.upstream_error url=%s err=%s", url, exc)
        return {"status": "error", "url": url, "error": str(exc)}
    if response.is_error:
        return {"status": "error", "url": url, "error": f"HTTP {response.status_code}", "body": response.text[:300]}
    return {"status": "ok", "url": url, "upstreamStatus": response.status_code}
