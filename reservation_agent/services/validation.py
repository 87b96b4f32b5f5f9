from __future__ import annotations

from typing import Any, List, Mapping

REQUIRED_FIELDS = ("restaurantName", "partySize", "date", "timeWindowStart", "timeWindowEnd")

FIELD_LABELS = {
    "restaurantName": "the restaurant",
    "partySize": "the party size",
    "date": "the date",
    "timeWindowStart": "the time",
    "timeWindowEnd": "the latest time that works",
    "destinationPhone": "the restaurant's phone number",
    "userPhone": "your phone number",
}

FIELD_PROMPTS = {
    "restaurantName": "Which restaurant would you like me to call?",
    "partySize": "How many people will be dining?",
    "date": "What date would you like the reservation for?",
    "timeWindowStart": "What time would you like to book?",
    "timeWindowEnd": "What's the latest time that would work for you?",
    "destinationPhone": "I couldn't find a phone number for them. What's the restaurant's number so I can call?",
    "userPhone": "What's the best number to reach you at?",
}


def validate_reservation(details: Mapping[str, Any]) -> List[str]:
    return [name for name in REQUIRED_FIELDS if details.get(name) in (None, "")]


def question_for_missing(missing: List[str]) -> str:
    if not missing:
        return "Anything else you'd like me to add before I call?"
    # End time falls out of the start time, so ask for the start first.
    if "timeWindowStart" in missing and "timeWindowEnd" in missing:
        missing = [name for name in missing if name != "timeWindowEnd"]
    if len(missing) == 1:
        return FIELD_PROMPTS.get(missing[0], f"Could you tell me {missing[0]}?")
    labels = [FIELD_LABELS.get(name, name) for name in missing]
    listed = ", ".join(labels[:-1]) + f" and {labels[-1]}"
    return f"To place the call I still need {listed}. {FIELD_PROMPTS.get(missing[0], '')}".strip()
