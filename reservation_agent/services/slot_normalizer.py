"""Merge brain tool arguments into the canonical slot record.

Arguments come in whatever casing the brain felt like producing. Every
canonical field owns a fixed precedence list of keys; the first key carrying a
non-empty value is the one used. Coerced values overwrite existing ones, but a
value that is empty or fails coercion never replaces a populated field.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import logging
from word2number import w2n

from reservation_agent.models.slots import BOOKING, GeoPoint, SlotState
from reservation_agent.services.datetime_parser import DateTimeParser, add_minutes, parse_time_range, to_24h
from reservation_agent.services.phone import extract_phone, find_phone

logger = logging.getLogger(__name__)

FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "restaurantName": ("restaurantName", "restaurant_name", "restaurant", "name", "businessName", "business_name"),
    "partySize": ("partySize", "party_size", "guests", "people", "covers"),
    "date": ("date", "day", "reservationDate", "reservation_date"),
    "timeWindowStart": ("timeWindowStart", "time_window_start", "time", "startTime", "start_time"),
    "timeWindowEnd": ("timeWindowEnd", "time_window_end", "endTime", "end_time"),
    "destinationPhone": (
        "destinationPhone",
        "destination_phone",
        "destPhone",
        "phone",
        "restaurantPhone",
        "targetPhone",
    ),
    "userPhone": ("userPhone", "user_phone", "callbackPhone", "callback_phone", "myPhone"),
    "specialRequests": ("specialRequests", "special_requests", "notes", "requests"),
    "address": ("address", "formattedAddress", "formatted_address"),
    "website": ("website", "url"),
    "placeId": ("placeId", "place_id"),
    "city": ("city", "locality"),
    "distanceMi": ("distanceMi", "distance_mi", "distance"),
}

HINT_ALIASES: Dict[str, Tuple[str, ...]] = {
    "desired_start": ("desiredStart", "desired_start", "desiredWindowStart", "window_start"),
    "desired_end": ("desiredEnd", "desired_end", "desiredWindowEnd", "window_end"),
}

_KINDS = {"restaurant", "appliance", "tires", "other"}
_LATEST_END = "23:59"


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def pick(args: Mapping[str, Any], aliases: Tuple[str, ...]) -> Any:
    for key in aliases:
        if key in args and not _is_empty(args[key]):
            return args[key]
    return None


def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        text = str(value).strip()
        return text or None
    return None


def _coerce_restaurant(value: Any) -> Optional[str]:
    text = _coerce_text(value)
    # A bare number is a party size or a phone fragment, not a name.
    if not text or re.fullmatch(r"\d+(\s+\d+)?", text):
        return None
    return text


def _coerce_party_size(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    size: Optional[int] = None
    if isinstance(value, int):
        size = value
    elif isinstance(value, float) and value.is_integer():
        size = int(value)
    elif isinstance(value, str):
        match = re.search(r"\d+", value)
        if match:
            size = int(match.group(0))
        else:
            try:
                size = w2n.word_to_num(value.strip().lower())
            except ValueError:
                size = None
    # word2number reads "one point five" as 1.5.
    if not isinstance(size, int) or not 1 <= size <= 20:
        return None
    return size


def _coerce_phone(value: Any) -> Optional[str]:
    text = _coerce_text(value)
    if not text:
        return None
    return extract_phone(text) or find_phone(text)


def _coerce_distance(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        match = re.search(r"\d+(?:\.\d+)?", value)
        value = match.group(0) if match else None
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        return None


def _coerce_time(value: Any) -> Optional[str]:
    text = _coerce_text(value)
    return to_24h(text) if text else None


def _coercers(parser: DateTimeParser) -> Dict[str, Callable[[Any], Any]]:
    def coerce_date(value: Any) -> Optional[str]:
        text = _coerce_text(value)
        return parser.parse_date(text) if text else None

    return {
        "restaurantName": _coerce_restaurant,
        "partySize": _coerce_party_size,
        "date": coerce_date,
        "timeWindowStart": _coerce_time,
        "timeWindowEnd": _coerce_time,
        "destinationPhone": _coerce_phone,
        "userPhone": _coerce_phone,
        "specialRequests": _coerce_text,
        "address": _coerce_text,
        "website": _coerce_text,
        "placeId": _coerce_text,
        "city": _coerce_text,
        "distanceMi": _coerce_distance,
    }


def apply_datetime_hints(
    details: Dict[str, Any],
    desired_start: Optional[str],
    desired_end: Optional[str],
    parser: DateTimeParser,
) -> Dict[str, Any]:
    """Fill date/start/end from ISO datetime hints without overwriting anything."""
    result = dict(details)
    start_date, start_time = parser.split_iso_datetime(desired_start)
    _, end_time = parser.split_iso_datetime(desired_end)
    if start_date and not result.get("date"):
        result["date"] = start_date
    if start_time and not result.get("timeWindowStart"):
        result["timeWindowStart"] = start_time
    if end_time and not result.get("timeWindowEnd"):
        result["timeWindowEnd"] = end_time
    return fix_time_window(result)


def fix_time_window(details: Dict[str, Any]) -> Dict[str, Any]:
    start = details.get("timeWindowStart")
    end = details.get("timeWindowEnd")
    if not start:
        return details
    if not end or end <= start:
        end = add_minutes(start, 30)
        if not end or end <= start:
            end = _LATEST_END
        details["timeWindowEnd"] = end
    return details


def normalize(existing: Mapping[str, Any], args: Mapping[str, Any], parser: DateTimeParser) -> Dict[str, Any]:
    """Return new details with ``args`` merged into ``existing``."""
    result = dict(existing or {})
    if not isinstance(args, Mapping):
        return result
    coercers = _coercers(parser)
    for field_name, aliases in FIELD_ALIASES.items():
        raw = pick(args, aliases)
        if raw is None:
            continue
        value = coercers[field_name](raw)
        if value is None:
            logger.debug("normalizer.rejected field=%s value=%r", field_name, raw)
            continue
        result[field_name] = value

    # "7-8pm" given as a single time means a window.
    raw_time = pick(args, FIELD_ALIASES["timeWindowStart"])
    if isinstance(raw_time, str) and pick(args, FIELD_ALIASES["timeWindowEnd"]) is None:
        window = parse_time_range(raw_time)
        if window:
            result["timeWindowStart"], result["timeWindowEnd"] = window

    hints = {name: pick(args, aliases) for name, aliases in HINT_ALIASES.items()}
    result = apply_datetime_hints(result, hints["desired_start"], hints["desired_end"], parser)
    return fix_time_window(result)


def normalize_state(state: SlotState, args: Mapping[str, Any], parser: DateTimeParser) -> SlotState:
    """Merge tool arguments into a copy of the whole slot state.

    Top-level keys (mode, kind, hints, search anchor) are handled here; the
    ``details`` map goes through :func:`normalize`. A nested ``details`` or
    ``slots`` object in the arguments is flattened first.
    """
    updated = state.model_copy(deep=True)
    if not isinstance(args, Mapping):
        return updated

    flat: Dict[str, Any] = {}
    for nested_key in ("slots", "details"):
        nested = args.get(nested_key)
        if isinstance(nested, Mapping):
            flat.update(nested)
    flat.update({key: value for key, value in args.items() if key not in ("slots", "details")})

    if str(flat.get("mode", "")).lower() == BOOKING:
        updated.mode = BOOKING
    kind = str(flat.get("kind") or "").lower()
    if kind in _KINDS:
        updated.kind = kind

    for attr, aliases in HINT_ALIASES.items():
        value = pick(flat, aliases)
        if isinstance(value, str):
            setattr(updated, attr, value.strip())

    radius = pick(flat, ("radiusMiles", "radius_miles", "radius"))
    radius = _coerce_distance(radius) if radius is not None else None
    if radius is not None and radius > 0:
        updated.radius_miles = radius

    geo = pick(flat, ("geoCenter", "geo_center", "geo"))
    if isinstance(geo, Mapping):
        lat, lng = geo.get("lat"), geo.get("lng", geo.get("lon"))
        if isinstance(lat, (int, float)) and isinstance(lng, (int, float)):
            updated.geo_center = GeoPoint(lat=lat, lng=lng)

    updated.details = normalize(updated.details, flat, parser)
    return updated
