from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .actions import InvalidParameters

DEFAULT_EVENT_HOUR = 14
DEFAULT_DURATION_MINUTES = 60

_WEEKDAY_TO_INDEX = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_MONTH_TO_NUMBER = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
_MONTH_NAME = r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
_MONTH_DAY_PATTERN = re.compile(
    rf"\b{_MONTH_NAME}\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?:,?\s*(\d{{4}})\b)?"
)
_DAY_MONTH_PATTERN = re.compile(
    rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH_NAME}(?![a-z])(?:,?\s*(\d{{4}})\b)?"
)
_CLOCK_PATTERN = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)(?![a-z])")
_24H_PATTERN = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_BARE_HOUR_PATTERN = re.compile(
    rf"\bat\s+(\d{{1,2}})(?::([0-5]\d))?\b(?!\s*(?:am|pm|a\.m|p\.m)|\s+(?:of\s+)?{_MONTH_NAME}(?![a-z]))"
)


def resolve_zone(timezone_name: str | None) -> tzinfo:
    try:
        return ZoneInfo((timezone_name or "").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def parse_iso_datetime(raw: str, zone: tzinfo) -> datetime | None:
    value = (raw or "").strip()
    if not value or not re.match(r"^\d{4}-\d{2}-\d{2}[T ]\d{1,2}:\d{2}", value):
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


def parse_iso_date(raw: str) -> date | None:
    match = re.match(r"^\s*(\d{4}-\d{2}-\d{2})\b", raw or "")
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(1))
    except ValueError:
        return None


def find_day(text: str, today: date) -> date | None:
    """Day referenced by ``text``, or None when it names no recognizable day."""
    explicit = parse_iso_date(text)
    if explicit is not None:
        return explicit
    lowered = (text or "").strip().lower()
    named = _month_day(lowered, today)
    if named is not None:
        return named
    if "day after tomorrow" in lowered:
        return today + timedelta(days=2)
    if "tomorrow" in lowered:
        return today + timedelta(days=1)
    if "next week" in lowered:
        return today + timedelta(days=7)
    for name, index in _WEEKDAY_TO_INDEX.items():
        if re.search(rf"\b{name}\b", lowered):
            days_ahead = (index - today.weekday()) % 7
            if "next " + name in lowered and days_ahead == 0:
                days_ahead = 7
            return today + timedelta(days=days_ahead)
    if re.search(r"\b(today|tonight|now|this (morning|afternoon|evening))\b", lowered):
        return today
    return None


def resolve_day(text: str, today: date) -> date:
    """Day referenced by ``text``; ``today`` when nothing recognizable is found."""
    return find_day(text, today) or today


def _month_day(lowered: str, today: date) -> date | None:
    match = _MONTH_DAY_PATTERN.search(lowered)
    if match:
        month_name, day_text, year_text = match.groups()
    else:
        match = _DAY_MONTH_PATTERN.search(lowered)
        if not match:
            return None
        day_text, month_name, year_text = match.groups()
    month = _MONTH_TO_NUMBER[month_name[:3]]
    year = int(year_text) if year_text else today.year
    try:
        resolved = date(year, month, int(day_text))
    except ValueError:
        raise InvalidParameters(f"'{match.group(0)}' is not a valid date.") from None
    if year_text is None and resolved < today:
        # A past month/day without a year means the next occurrence.
        try:
            resolved = resolved.replace(year=today.year + 1)
        except ValueError:
            raise InvalidParameters(f"'{match.group(0)}' is not a valid date.") from None
    return resolved


def resolve_clock_time(text: str) -> time | None:
    lowered = (text or "").strip().lower()
    if not lowered:
        return None
    if re.search(r"\bnoon\b|\bmidday\b", lowered):
        return time(12, 0)
    if re.search(r"\bmidnight\b", lowered):
        return time(0, 0)
    match = _CLOCK_PATTERN.search(lowered)
    if match:
        hours = int(match.group(1))
        minutes = int(match.group(2) or "0")
        meridiem = match.group(3).replace(".", "")
        if hours > 12 or minutes > 59:
            return None
        if meridiem == "pm" and hours != 12:
            hours += 12
        elif meridiem == "am" and hours == 12:
            hours = 0
        return time(hours, minutes)
    match = _BARE_HOUR_PATTERN.search(lowered)
    if match:
        hours = int(match.group(1))
        minutes = int(match.group(2) or "0")
        if hours > 23:
            return None
        # Without am/pm, small hours are afternoon meetings ("at 3").
        if 1 <= hours <= 7:
            hours += 12
        return time(hours, minutes)
    match = _24H_PATTERN.search(lowered)
    if match:
        return time(int(match.group(1)), int(match.group(2)))
    if "tonight" in lowered or "evening" in lowered:
        return time(19, 0)
    if "morning" in lowered:
        return time(9, 0)
    if "afternoon" in lowered:
        return time(14, 0)
    return None


def resolve_date_time(
    text: str,
    timezone_name: str | None,
    now: datetime | None = None,
    duration_minutes: int | None = None,
) -> tuple[datetime, datetime]:
    """Resolve a classifier date/time string into a concrete ``[start, end)``."""
    zone = resolve_zone(timezone_name)
    local_now = (now or datetime.now(timezone.utc)).astimezone(zone)
    minutes = duration_minutes if duration_minutes and duration_minutes > 0 else DEFAULT_DURATION_MINUTES

    start = parse_iso_datetime(text, zone)
    if start is None:
        day = find_day(text, local_now.date())
        clock = resolve_clock_time(text)
        if day is None and clock is None:
            raise InvalidParameters(f"Could not understand the date or time '{text}'.")
        start = datetime.combine(
            day or local_now.date(), clock or time(DEFAULT_EVENT_HOUR, 0), tzinfo=zone
        )
    return start, start + timedelta(minutes=minutes)


def day_bounds(day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time(0, 0), tzinfo=zone)
    return start, start + timedelta(days=1)


def resolve_timeframe(
    timeframe: str | None,
    timezone_name: str | None,
    now: datetime | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> tuple[datetime, datetime, str]:
    """Listing window for a timeframe phrase; weeks run Sunday to Saturday."""
    zone = resolve_zone(timezone_name)
    today = (now or datetime.now(timezone.utc)).astimezone(zone).date()

    explicit_start = parse_iso_date(start_date or "")
    if explicit_start is not None:
        explicit_end = parse_iso_date(end_date or "") or explicit_start
        if explicit_end < explicit_start:
            explicit_end = explicit_start
        window_start, _ = day_bounds(explicit_start, zone)
        _, window_end = day_bounds(explicit_end, zone)
        return window_start, window_end, f"{explicit_start.isoformat()} to {explicit_end.isoformat()}"

    lowered = (timeframe or "").strip().lower()
    if lowered in {"this week", "week", "the week", "rest of the week"}:
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        start, _ = day_bounds(week_start, zone)
        return start, start + timedelta(days=7), "this week"
    if lowered == "next week":
        week_start = today - timedelta(days=(today.weekday() + 1) % 7) + timedelta(days=7)
        start, _ = day_bounds(week_start, zone)
        return start, start + timedelta(days=7), "next week"
    if not lowered or lowered in {"today", "now"}:
        start, end = day_bounds(today, zone)
        return start, end, "today"
    day = resolve_day(lowered, today)
    start, end = day_bounds(day, zone)
    label = lowered if day != today else "today"
    return start, end, label
