from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from voicepilot.tools.base import BusyInterval

WORKDAY_START = time(9, 0)
WORKDAY_END = time(17, 0)
MAX_SUGGESTIONS = 3


@dataclass(frozen=True)
class AvailabilityReport:
    day: date
    requested_start: datetime | None
    requested_end: datetime | None
    available: bool
    conflicts: list[BusyInterval]
    busy: list[BusyInterval]
    suggestions: list[tuple[datetime, datetime]]

    def to_payload(self) -> dict[str, object]:
        return {
            "date": self.day.isoformat(),
            "requestedStart": self.requested_start.isoformat() if self.requested_start else None,
            "requestedEnd": self.requested_end.isoformat() if self.requested_end else None,
            "available": self.available,
            "conflicts": [_interval_payload(item.start, item.end) for item in self.conflicts],
            "busy": [_interval_payload(item.start, item.end) for item in self.busy],
            "suggestions": [_interval_payload(start, end) for start, end in self.suggestions],
        }


def overlaps(interval: BusyInterval, start: datetime, end: datetime) -> bool:
    return interval.start < end and interval.end > start


def conflicts_for(busy: list[BusyInterval], start: datetime, end: datetime) -> list[BusyInterval]:
    return [interval for interval in busy if overlaps(interval, start, end)]


def working_window(day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    return (
        datetime.combine(day, WORKDAY_START, tzinfo=zone),
        datetime.combine(day, WORKDAY_END, tzinfo=zone),
    )


def find_free_slots(
    busy: list[BusyInterval],
    window_start: datetime,
    window_end: datetime,
    duration: timedelta,
    limit: int = MAX_SUGGESTIONS,
    not_before: datetime | None = None,
) -> list[tuple[datetime, datetime]]:
    """First ``limit`` back-to-back slots of ``duration`` that avoid every busy interval."""
    if duration <= timedelta(0) or limit < 1:
        return []
    cursor = window_start
    if not_before is not None and not_before > cursor:
        cursor = not_before
    slots: list[tuple[datetime, datetime]] = []
    upcoming = [interval for interval in sorted(busy, key=lambda item: item.start) if interval.end > cursor]
    for interval in [*upcoming, BusyInterval(start=window_end, end=window_end)]:
        gap_end = min(interval.start, window_end)
        while gap_end - cursor >= duration:
            slots.append((cursor, cursor + duration))
            if len(slots) >= limit:
                return slots
            cursor += duration
        if interval.start >= window_end:
            break
        cursor = max(cursor, interval.end)
    return slots


def build_report(
    day: date,
    zone: tzinfo,
    busy: list[BusyInterval],
    requested_start: datetime | None,
    requested_end: datetime | None,
    duration: timedelta,
    now: datetime | None = None,
) -> AvailabilityReport:
    window_start, window_end = working_window(day, zone)
    conflicts: list[BusyInterval] = []
    if requested_start is not None and requested_end is not None:
        conflicts = conflicts_for(busy, requested_start, requested_end)
        available = not conflicts
    else:
        available = not conflicts_for(busy, window_start, window_end)
    suggestions: list[tuple[datetime, datetime]] = []
    if not available or requested_start is None:
        suggestions = find_free_slots(busy, window_start, window_end, duration, not_before=now)
    return AvailabilityReport(
        day=day,
        requested_start=requested_start,
        requested_end=requested_end,
        available=available,
        conflicts=conflicts,
        busy=sorted(busy, key=lambda item: item.start),
        suggestions=suggestions,
    )


def _interval_payload(start: datetime, end: datetime) -> dict[str, str]:
    return {"start": start.isoformat(), "end": end.isoformat()}
