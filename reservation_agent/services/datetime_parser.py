from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Tuple

import logging
from dateutil import parser as dateparser
from dateutil import tz

logger = logging.getLogger(__name__)

_WEEKDAYS = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tues": 1, "tue": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thurs": 3, "thu": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}

_MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sept": 9, "sep": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

_MONTH_ALT = "|".join(sorted(_MONTHS, key=len, reverse=True))
_WEEKDAY_ALT = "|".join(sorted(_WEEKDAYS, key=len, reverse=True))
# A year after a day number, but not the hour of a following clock time.
_YEAR = r"(?:,?\s+(\d{4}|\d{2})(?![\d:])(?!\s*(?:am|pm|a\.m|p\.m)))?"

_TODAY_RE = re.compile(r"\b(today|tonight)\b")
_TOMORROW_RE = re.compile(r"\btomorrow\b")
_WEEKDAY_RE = re.compile(rf"\b(?:(this|next|on)\s+)?({_WEEKDAY_ALT})\b\.?")
# "Mon Ami Gabi" or "Sun Ya" are names; an abbreviation only counts after a qualifier.
_FULL_WEEKDAYS = {"monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"}
_MONTH_DAY_RE = re.compile(rf"\b({_MONTH_ALT})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b{_YEAR}")
_DAY_MONTH_RE = re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?({_MONTH_ALT})\b\.?{_YEAR}")
_NUMERIC_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{4}|\d{2}))?\b")
_ISO_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")

_MERIDIEM = r"(a\.?m\.?|p\.?m\.?)"
_TIME_12H_RE = re.compile(rf"\b(\d{{1,2}})(?::([0-5]\d))?\s*{_MERIDIEM}(?![a-z])")
_TIME_24H_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_CLOCK = r"(\d{1,2})(?::([0-5]\d))?\s*" + _MERIDIEM + "?"
_RANGE_RE = re.compile(
    rf"(?:\bbetween\s+)?\b{_CLOCK}\s*(?:-|–|\bto\b|\buntil\b|\btill\b|\band\b)\s*{_CLOCK}(?![a-z\d])"
)

_REFERENCE_DAY = datetime(2000, 1, 1)


def _expand_year(raw: Optional[str], default: int) -> int:
    if not raw:
        return default
    year = int(raw)
    if len(raw) == 2:
        return 1900 + year if year >= 70 else 2000 + year
    return year


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _clock(hour_raw: str, minute_raw: Optional[str], meridiem: Optional[str]) -> Optional[str]:
    hour = int(hour_raw)
    minute = int(minute_raw) if minute_raw else 0
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        is_pm = meridiem.replace(".", "").startswith("p")
        hour = hour % 12 + (12 if is_pm else 0)
    elif hour > 23:
        return None
    if minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def to_24h(text: Optional[str]) -> Optional[str]:
    """Parse "7pm", "7:30 p.m." or "19:30" into "HH:mm"."""
    if not text:
        return None
    lowered = str(text).strip().lower()
    if re.search(r"\bnoon\b", lowered):
        return "12:00"
    if re.search(r"\bmidnight\b", lowered):
        return "00:00"
    match = _TIME_12H_RE.search(lowered)
    if match:
        parsed = _clock(match.group(1), match.group(2), match.group(3))
        if parsed:
            return parsed
    match = _TIME_24H_RE.search(lowered)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)}"
    return None


def parse_time_range(text: Optional[str]) -> Optional[Tuple[str, str]]:
    """Find a start/end window such as "7-8pm" or "between 7:00 pm and 8:30 pm".

    A start without am/pm borrows the end's. Bare hours with no am/pm anywhere
    are ignored.
    """
    if not text:
        return None
    for match in _RANGE_RE.finditer(str(text).lower()):
        s_hour, s_min, s_mer, e_hour, e_min, e_mer = match.groups()
        if not s_mer and not e_mer and not (s_min and e_min):
            continue
        start = _clock(s_hour, s_min, s_mer or e_mer)
        end = _clock(e_hour, e_min, e_mer or s_mer)
        if not start or not end:
            continue
        if start >= end and not s_mer and e_mer and e_mer.startswith("p"):
            start = _clock(s_hour, s_min, "am")
        if start and start < end:
            return start, end
    return None


def add_minutes(hhmm: Optional[str], minutes: int) -> Optional[str]:
    normalized = to_24h(hhmm)
    if not normalized:
        return None
    hour, minute = (int(part) for part in normalized.split(":"))
    shifted = _REFERENCE_DAY.replace(hour=hour, minute=minute) + timedelta(minutes=minutes)
    return shifted.strftime("%H:%M")


def pretty_time(hhmm: Optional[str]) -> str:
    normalized = to_24h(hhmm)
    if not normalized:
        return ""
    hour, minute = (int(part) for part in normalized.split(":"))
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


def pretty_date(iso: Optional[str]) -> str:
    if not iso:
        return ""
    try:
        parsed = date.fromisoformat(iso)
    except ValueError:
        return iso
    return f"{parsed.strftime('%a, %b')} {parsed.day}"


def pretty_range(start: Optional[str], end: Optional[str]) -> str:
    if start and end:
        return f"{pretty_time(start)} to {pretty_time(end)}"
    return pretty_time(start or end)


class DateTimeParser:
    """Resolves natural date phrases against "today" in one fixed timezone."""

    def __init__(self, timezone_name: str = "America/New_York", now: Optional[Callable[[], datetime]] = None) -> None:
        tzinfo = tz.gettz(timezone_name)
        if tzinfo is None:
            raise ValueError(f"Unknown timezone: {timezone_name}")
        self.timezone_name = timezone_name
        self.tzinfo = tzinfo
        self._now = now

    def now(self) -> datetime:
        current = self._now() if self._now else datetime.now(self.tzinfo)
        if current.tzinfo is None:
            return current.replace(tzinfo=self.tzinfo)
        return current.astimezone(self.tzinfo)

    def today(self) -> date:
        return self.now().date()

    def parse_date(
        self, text: Optional[str], fallback: Optional[str] = None, allow_relative: bool = True
    ) -> Optional[str]:
        """Resolve the first date phrase in ``text`` to "YYYY-MM-DD".

        With ``allow_relative=False`` only explicit calendar dates are considered,
        so a summary like "Friday, Nov 8" resolves to the written date.
        """
        if not text:
            return fallback
        lowered = str(text).strip().lower()
        today = self.today()

        if allow_relative and _TODAY_RE.search(lowered):
            return today.isoformat()
        if allow_relative and _TOMORROW_RE.search(lowered):
            return (today + timedelta(days=1)).isoformat()

        match = self._weekday(lowered) if allow_relative else None
        if match:
            qualifier, name = match.group(1), match.group(2)
            days_ahead = (_WEEKDAYS[name] - today.weekday()) % 7
            if qualifier == "next":
                days_ahead += 7
            return (today + timedelta(days=days_ahead)).isoformat()

        match = _MONTH_DAY_RE.search(lowered)
        if match:
            resolved = _safe_date(_expand_year(match.group(3), today.year), _MONTHS[match.group(1)], int(match.group(2)))
            if resolved:
                return resolved.isoformat()

        match = _DAY_MONTH_RE.search(lowered)
        if match:
            resolved = _safe_date(_expand_year(match.group(3), today.year), _MONTHS[match.group(2)], int(match.group(1)))
            if resolved:
                return resolved.isoformat()

        match = _NUMERIC_RE.search(lowered)
        if match:
            resolved = _safe_date(_expand_year(match.group(3), today.year), int(match.group(1)), int(match.group(2)))
            if resolved:
                return resolved.isoformat()

        match = _ISO_RE.search(lowered)
        if match:
            resolved = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            if resolved:
                return resolved.isoformat()

        return fallback

    def split_iso_datetime(self, value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """Break an ISO datetime hint into (date, "HH:mm") in the reference timezone."""
        if not value or not isinstance(value, str):
            return None, None
        try:
            parsed = dateparser.isoparse(value.strip())
        except (ValueError, OverflowError):
            logger.debug("datetime.invalid_iso value=%s", value)
            return None, None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(self.tzinfo)
        has_time = "T" in value or " " in value.strip()
        return parsed.date().isoformat(), parsed.strftime("%H:%M") if has_time else None

    @staticmethod
    def _weekday(lowered: str) -> Optional[re.Match]:
        for match in _WEEKDAY_RE.finditer(lowered):
            if match.group(2) in _FULL_WEEKDAYS or match.group(1):
                return match
        return None
