from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional

import logging
import httpx

from reservation_agent.config import Settings
from reservation_agent.services.phone import extract_phone, is_e164
from reservation_agent.utils.fixture_loader import load_known_businesses

logger = logging.getLogger(__name__)


def _name_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


class KnownBusinessDirectory:
    """Static name -> phone table for places we call often."""

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None, path: Optional[str] = None) -> None:
        if entries is None:
            try:
                entries = load_known_businesses(path)
            except (OSError, ValueError) as exc:
                logger.warning("places.directory_unavailable path=%s err=%s", path, exc)
                entries = []
        self._by_key: Dict[str, Dict[str, Any]] = {}
        for entry in entries:
            for name in [entry.get("name", ""), *entry.get("aliases", [])]:
                key = _name_key(name)
                if key:
                    self._by_key[key] = entry

    def lookup(self, name: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._by_key.get(_name_key(name or ""))

    def phone_for(self, name: Optional[str]) -> Optional[str]:
        entry = self.lookup(name)
        if not entry:
            return None
        return extract_phone(entry.get("e164_phone") or entry.get("phone"))


class PlacesClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base = settings.functions_base.rstrip("/")
        self.headers = settings.auth_headers()
        self.timeout = settings.http_timeout_seconds
        self._transport = transport

    async def place_phone(self, place_id: str) -> Optional[str]:
        if not self.base or not place_id:
            return None
        url = f"{self.base}/place-details"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=5.0), transport=self._transport
            ) as client:
                response = await client.get(url, params={"placeId": place_id}, headers=self.headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("places.lookup_failed place_id=%s err=%s", place_id, exc)
            return None
        if not isinstance(data, dict):
            return None
        # Some deployments wrap the payload in {"result": {...}}.
        result = data.get("result") if isinstance(data.get("result"), dict) else data
        phone = result.get("e164_phone") or result.get("formatted_phone") or result.get("phone")
        return extract_phone(phone) if phone else None


class DestinationPhoneResolver:
    def __init__(self, directory: KnownBusinessDirectory, places: Optional[PlacesClient] = None) -> None:
        self.directory = directory
        self.places = places

    async def resolve(self, details: Mapping[str, Any]) -> Optional[str]:
        """Slot value first, then the known-business table, then a place lookup."""
        current = details.get("destinationPhone")
        if is_e164(current):
            return current
        known = self.directory.phone_for(details.get("restaurantName"))
        if known:
            logger.info("places.known_business name=%s", details.get("restaurantName"))
            return known
        place_id = details.get("placeId")
        if self.places and place_id:
            return await self.places.place_phone(str(place_id))
        return None
