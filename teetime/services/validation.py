"""Deterministic parsing and validation of booking fields.

Dates are normalised to ISO ``YYYY-MM-DD`` strings, times to 24h ``HH:MM``.
Relative expressions ("tomorrow", "next friday") resolve against the
caller-supplied ``today`` so the same message always yields the same date
within one turn.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dateutil_parser

from teetime.config import settings

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

TIME_PREFIXES = re.compile(r"^(at|around|about|after|from|by|@)\s+")
TIME_TOKEN = re.compile(r"^(\d{1,2})(?::(\d{2}))?(am|pm)?$")
RANGE_SPLIT = re.compile(r"\s*(?:-|–|\bto\b|\buntil\b|\btill\b)\s*")
BETWEEN = re.compile(r"^between\s+(.+)\s+and\s+(.+)$")
ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
US_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})(?:[/-](\d{4}))?$")
EXPLICIT_YEAR = re.compile(r"\b\d{4}\b")


@dataclass(frozen=True)
class TimeWindow:
    start: str
    end: Optional[str] = None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _next_weekday(today: date, weekday: int) -> date:
    delta = (weekday - today.weekday() + 7) % 7 or 7
    return today + timedelta(days=delta)


def parse_preferred_date(value: Optional[str], today: date) -> Optional[str]:
    text = (value or "").strip().lower()
    if not text:
        return None

    if text == "today":
        return today.isoformat()
    if text == "tomorrow":
        return (today + timedelta(days=1)).isoformat()
    if text.startswith("next ") and text[5:].strip() in WEEKDAYS:
        return _next_weekday(today, WEEKDAYS.index(text[5:].strip())).isoformat()
    if text.startswith("this ") and text[5:].strip() in WEEKDAYS:
        weekday = WEEKDAYS.index(text[5:].strip())
        delta = (weekday - today.weekday() + 7) % 7
        return (today + timedelta(days=delta)).isoformat()
    if text in WEEKDAYS:
        return _next_weekday(today, WEEKDAYS.index(text)).isoformat()

    iso_match = ISO_DATE.match(text)
    if iso_match:
        parsed = _safe_date(int(iso_match.group(1)), int(iso_match.group(2)), int(iso_match.group(3)))
        return parsed.isoformat() if parsed else None

    us_match = US_DATE.match(text)
    if us_match:
        month, day = int(us_match.group(1)), int(us_match.group(2))
        year = int(us_match.group(3)) if us_match.group(3) else today.year
        parsed = _safe_date(year, month, day)
        if parsed is None:
            return None
        if not us_match.group(3) and parsed < today:
            parsed = _safe_date(year + 1, month, day)
        return parsed.isoformat() if parsed else None

    try:
        parsed_dt = dateutil_parser.parse(text, default=datetime(today.year, today.month, today.day))
    except (ValueError, OverflowError):
        return None
    parsed = parsed_dt.date()
    if not EXPLICIT_YEAR.search(text) and parsed < today:
        rolled = _safe_date(parsed.year + 1, parsed.month, parsed.day)
        parsed = rolled or parsed
    return parsed.isoformat()


def _parse_time_token(value: str, default_meridiem: Optional[str] = None) -> Optional[tuple[str, Optional[str]]]:
    cleaned = re.sub(r"\s+", "", value.strip().lower()).replace(".", "")
    if not cleaned:
        return None
    if cleaned == "noon":
        return "12:00", "pm"
    if cleaned == "midnight":
        return "00:00", "am"

    match = TIME_TOKEN.match(cleaned)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    meridiem = match.group(3)
    if minute > 59:
        return None

    if not meridiem and default_meridiem and 12 < hour <= 23:
        # Start of a range already in 24h form ("13-15pm").
        return f"{hour:02d}:{minute:02d}", None

    if meridiem or default_meridiem:
        meridiem = meridiem or default_meridiem
        if hour < 1 or hour > 12:
            return None
        if meridiem == "pm" and hour != 12:
            hour += 12
        if meridiem == "am" and hour == 12:
            hour = 0
    elif hour > 23:
        return None

    return f"{hour:02d}:{minute:02d}", meridiem


def parse_preferred_time_window(value: Optional[str]) -> Optional[TimeWindow]:
    text = (value or "").strip().lower()
    if not text:
        return None
    text = TIME_PREFIXES.sub("", text)

    between = BETWEEN.match(text)
    if between:
        text = f"{between.group(1)} - {between.group(2)}"

    parts = [part for part in RANGE_SPLIT.split(text) if part]
    if len(parts) > 1:
        end = _parse_time_token(parts[1])
        if not end:
            return None
        start = _parse_time_token(parts[0], end[1])
        if not start:
            return None
        return TimeWindow(start=start[0], end=end[0])

    parsed = _parse_time_token(text)
    if not parsed:
        return None
    return TimeWindow(start=parsed[0])


def get_max_players() -> int:
    return settings.booking_max_players if settings.booking_max_players >= 1 else 4


def normalize_players(value, max_players: Optional[int] = None) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    limit = max_players or get_max_players()
    if parsed < 1 or parsed > limit:
        return None
    return parsed


def combine_date_time(preferred_date: date | str, time_start: str) -> Optional[datetime]:
    """Naive wall-clock datetime for a booking's date and ``HH:MM`` start."""
    if isinstance(preferred_date, str):
        try:
            preferred_date = date.fromisoformat(preferred_date[:10])
        except ValueError:
            return None
    match = re.match(r"^(\d{1,2}):(\d{2})", time_start or "")
    if not match:
        return None
    try:
        return datetime(preferred_date.year, preferred_date.month, preferred_date.day, int(match.group(1)), int(match.group(2)))
    except ValueError:
        return None


def format_time_label(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    match = re.match(r"^(\d{1,2}):(\d{2})", value)
    if not match:
        return value
    hour, minute = int(match.group(1)), int(match.group(2))
    meridiem = "pm" if hour >= 12 else "am"
    display_hour = hour % 12 or 12
    minute_label = "" if minute == 0 else f":{minute:02d}"
    return f"{display_hour}{minute_label}{meridiem}"


def format_time_range_label(start: Optional[str], end: Optional[str]) -> Optional[str]:
    start_label = format_time_label(start)
    end_label = format_time_label(end)
    if start_label and end_label:
        return f"{start_label}-{end_label}"
    return start_label


def format_date_label(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if ISO_DATE.match(value):
        parsed = date.fromisoformat(value)
        return f"{parsed.strftime('%A')}, {parsed.strftime('%b')} {parsed.day} ({value})"
    return value


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "Etc/UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("Etc/UTC")


def local_today(now: datetime, tz_name: Optional[str]) -> date:
    """The member's calendar date at ``now``."""
    return now.astimezone(resolve_timezone(tz_name)).date()


def booking_start_utc(preferred_date: date | str, time_start: str, tz_name: Optional[str]) -> Optional[datetime]:
    """Booking wall-clock start in the member's timezone, converted to UTC."""
    naive = combine_date_time(preferred_date, time_start)
    if naive is None:
        return None
    return naive.replace(tzinfo=resolve_timezone(tz_name)).astimezone(timezone.utc)
