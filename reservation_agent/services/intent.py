from __future__ import annotations

import re
from typing import Any, Mapping, Optional

import logging

from reservation_agent.models.slots import BOOKING, DISCOVERY

logger = logging.getLogger(__name__)

_BOOKING_PATTERNS = [
    r"\bbook(?:ing)?\b",
    r"\breserv(?:e|ation)\b",
    r"\bmake a reservation\b",
    r"\bhold (?:a|us a|me a) table\b",
    r"\bget (?:us|me) a table\b",
    r"\blet'?s do\b",
    r"\bgo with\b",
    r"\bi'?ll take\b",
    r"\bpick\b",
]

_KIND_KEYWORDS = {
    "restaurant": [
        "restaurant", "dinner", "lunch", "brunch", "breakfast", "table", "reservation",
        "sushi", "pizza", "italian", "steakhouse", "bistro", "cafe", "eat",
    ],
    "appliance": [
        "appliance", "fridge", "refrigerator", "washer", "dryer", "dishwasher",
        "oven", "stove", "microwave", "freezer",
    ],
    "tires": ["tire", "tires", "tyre", "tyres", "flat", "alignment", "rotation"],
}

# Questions that only make sense once the user has committed to a place.
_DETAIL_QUESTIONS = [
    r"how many (?:people|guests|of you)",
    r"party size",
    r"what (?:time|date|day)",
    r"which (?:time|date|day)",
    r"(?:your|a) (?:phone|callback) number",
]

DISCOVERY_REDIRECT = (
    "Happy to help you find a spot. Tell me the area or the kind of food you're in the mood for, "
    "and I'll suggest a few places before we sort out the details."
)


def classify_mode(text: str, current_mode: str) -> str:
    """Move discovery to booking on commitment phrases. Booking never reverts."""
    if current_mode == BOOKING:
        return BOOKING
    lowered = (text or "").lower()
    for pattern in _BOOKING_PATTERNS:
        if re.search(pattern, lowered):
            logger.info("intent.booking pattern=%s", pattern)
            return BOOKING
    return DISCOVERY


def detect_kind(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    for kind, keywords in _KIND_KEYWORDS.items():
        if any(re.search(rf"\b{re.escape(word)}\b", lowered) for word in keywords):
            return kind
    return None


def guard_discovery_reply(text: str, mode: str, details: Mapping[str, Any]) -> str:
    if mode != DISCOVERY or details.get("restaurantName") or not text:
        return text
    lowered = text.lower()
    if "?" not in lowered:
        return text
    if any(re.search(pattern, lowered) for pattern in _DETAIL_QUESTIONS):
        logger.info("intent.discovery_guard redirected premature detail question")
        return DISCOVERY_REDIRECT
    return text
