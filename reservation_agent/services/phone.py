from __future__ import annotations

import re
from typing import Any, Mapping, Optional

import logging

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+\d{10,15}$")

# Phrases that mark the number as the business to call.
_DESTINATION_PHRASES = [
    r"\btheir (?:phone|number)\b",
    r"\b(?:restaurant|business|shop|place|store)'?s? (?:phone|number)\b",
    r"\bfront desk\b",
    r"\bnumber to call\b",
    r"\bcall them (?:at|on)\b",
    r"\bhost(?:ess)? stand\b",
]
_SELF_PHRASES = [
    r"\bmy (?:phone|number|cell|mobile)\b",
    r"\bmine\b",
    r"\bmy\b",
    r"\breach me\b",
    r"\bcall me\b",
]

# A run of digits, optionally separated by the punctuation people type in phone numbers.
_PHONE_RUN = re.compile(r"\+?\d[\d\s().\-]{5,}\d")


def extract_phone(text: Any) -> Optional[str]:
    """Return the E.164 form of the phone number in ``text``, or None.

    Non-digits are stripped; ten digits are assumed domestic (+1) and 11-15
    digits are taken as already carrying a country code.
    """
    if not isinstance(text, str):
        if isinstance(text, int) and not isinstance(text, bool):
            text = str(text)
        else:
            return None
    digits = "".join(ch for ch in text if ch.isdigit())
    if len(digits) == 10:
        return f"+1{digits}"
    if 11 <= len(digits) <= 15:
        return f"+{digits}"
    return None


def _phone_from_run(run: str) -> Optional[str]:
    if not run.startswith("+"):
        lead = re.match(r"\d+", run).group(0)
        # "table for 4 212 555 1234": a short count before a space is not a country code.
        if len(lead) <= 2 and lead != "1" and run[len(lead)].isspace():
            run = run[len(lead):]
    return extract_phone(run)


def find_phone(text: str) -> Optional[str]:
    """Locate the first phone-like token inside free text and normalize it."""
    if not text:
        return None
    for match in _PHONE_RUN.finditer(text):
        phone = _phone_from_run(match.group(0))
        if phone:
            return phone
    return None


def find_trailing_phone(text: str) -> Optional[str]:
    if not text:
        return None
    matches = list(_PHONE_RUN.finditer(text))
    for match in reversed(matches):
        phone = _phone_from_run(match.group(0))
        if phone:
            return phone
    return None


def is_e164(value: Any) -> bool:
    return isinstance(value, str) and bool(E164_PATTERN.match(value))


def implies_destination(text: str) -> Optional[bool]:
    """True for "their number" style phrasing, False for "my number", else None."""
    lowered = (text or "").lower()
    if any(re.search(pattern, lowered) for pattern in _DESTINATION_PHRASES):
        return True
    if any(re.search(pattern, lowered) for pattern in _SELF_PHRASES):
        return False
    return None


def assign_phone(text: str, details: Mapping[str, Any], expecting_dest_phone: bool) -> str:
    """Pick the slot a freshly captured number belongs to.

    Explicit phrasing wins. Otherwise a pending destination question claims it,
    then an empty user phone, then the destination.
    """
    hint = implies_destination(text)
    if hint is True:
        return "destinationPhone"
    if hint is False:
        return "userPhone"
    if expecting_dest_phone:
        return "destinationPhone"
    if not details.get("userPhone"):
        return "userPhone"
    return "destinationPhone"
