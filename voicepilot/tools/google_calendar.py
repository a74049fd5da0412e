from __future__ import annotations

from datetime import date, datetime, time, timezone
from urllib import parse as urlparse

from .base import BusyInterval, CalendarEvent, CalendarProvider, DownstreamProviderError, EventDraft
from .google_api import api_request_json


class GoogleCalendarClient(CalendarProvider):
    CALENDAR_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
    FREE_BUSY_URL = "https://www.googleapis.com/calendar/v3/freeBusy"

    def __init__(self, timeout_seconds: int = 8) -> None:
        self._timeout = max(1, int(timeout_seconds))

    def list_events(
        self,
        access_token: str,
        start: datetime,
        end: datetime,
        query: str | None = None,
        max_results: int = 25,
    ) -> list[CalendarEvent]:
        params: dict[str, object] = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": str(min(250, max(1, max_results))),
        }
        if query:
            params["q"] = query
        payload = self._request("GET", self.CALENDAR_EVENTS_URL, access_token, params=params)
        rows = payload.get("items", [])
        if not isinstance(rows, list):
            return []
        out: list[CalendarEvent] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            if str(row.get("status") or "").lower() == "cancelled":
                continue
            event = _to_event(row)
            if event is not None:
                out.append(event)
        return out

    def create_event(self, access_token: str, draft: EventDraft, timezone_name: str) -> CalendarEvent:
        if draft.start is None or draft.end is None:
            raise DownstreamProviderError("Event start and end are required.", "invalid_request")
        params = {"sendUpdates": "all"} if draft.attendees else None
        payload = self._request(
            "POST",
            self.CALENDAR_EVENTS_URL,
            access_token,
            params=params,
            body=_draft_body(draft, timezone_name),
        )
        return _require_event(payload, "create")

    def update_event(
        self,
        access_token: str,
        event_id: str,
        draft: EventDraft,
        timezone_name: str,
    ) -> CalendarEvent:
        payload = self._request(
            "PATCH",
            self._event_url(event_id),
            access_token,
            body=_draft_body(draft, timezone_name),
        )
        return _require_event(payload, "update")

    def delete_event(self, access_token: str, event_id: str) -> None:
        self._request("DELETE", self._event_url(event_id), access_token)

    def busy_intervals(
        self,
        access_token: str,
        start: datetime,
        end: datetime,
        timezone_name: str,
    ) -> list[BusyInterval]:
        payload = self._request(
            "POST",
            self.FREE_BUSY_URL,
            access_token,
            body={
                "timeMin": _rfc3339(start),
                "timeMax": _rfc3339(end),
                "timeZone": timezone_name or "UTC",
                "items": [{"id": "primary"}],
            },
        )
        calendars = payload.get("calendars")
        primary = calendars.get("primary") if isinstance(calendars, dict) else None
        busy = primary.get("busy", []) if isinstance(primary, dict) else []
        out: list[BusyInterval] = []
        for row in busy if isinstance(busy, list) else []:
            if not isinstance(row, dict):
                continue
            busy_start = parse_google_datetime(row.get("start"))
            busy_end = parse_google_datetime(row.get("end"))
            if busy_start is None or busy_end is None:
                continue
            out.append(BusyInterval(start=busy_start, end=busy_end))
        return sorted(out, key=lambda interval: interval.start)

    def _event_url(self, event_id: str) -> str:
        return f"{self.CALENDAR_EVENTS_URL}/{urlparse.quote(event_id, safe='')}"

    def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, object] | None = None,
        body: dict[str, object] | None = None,
    ) -> dict:
        return api_request_json(
            url=url,
            method=method,
            access_token=access_token,
            timeout=self._timeout,
            service_name="Google Calendar",
            params=params,
            body=body,
        )


def parse_google_datetime(raw: object) -> datetime | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    normalized = raw.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def event_time_label(event: CalendarEvent) -> str:
    if event.start is None:
        return "Time unavailable"
    if event.all_day:
        return event.start.strftime("%a, %b %d") + " (all day)"
    return event.start.strftime("%a, %b %d at %I:%M %p").replace(" 0", " ")


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _draft_body(draft: EventDraft, timezone_name: str) -> dict[str, object]:
    body: dict[str, object] = {}
    if draft.title:
        body["summary"] = draft.title
    if draft.start is not None:
        body["start"] = {"dateTime": draft.start.isoformat(), "timeZone": timezone_name or "UTC"}
    if draft.end is not None:
        body["end"] = {"dateTime": draft.end.isoformat(), "timeZone": timezone_name or "UTC"}
    if draft.location:
        body["location"] = draft.location
    if draft.description:
        body["description"] = draft.description
    if draft.attendees:
        body["attendees"] = [{"email": email} for email in draft.attendees]
    return body


def _event_boundary(raw: object) -> tuple[datetime | None, bool]:
    if not isinstance(raw, dict):
        return None, False
    parsed = parse_google_datetime(raw.get("dateTime"))
    if parsed is not None:
        return parsed, False
    date_only = raw.get("date")
    if isinstance(date_only, str) and date_only.strip():
        try:
            day = date.fromisoformat(date_only.strip())
        except ValueError:
            return None, True
        return datetime.combine(day, time(0, 0), tzinfo=timezone.utc), True
    return None, False


def _to_event(row: dict[str, object]) -> CalendarEvent | None:
    event_id = str(row.get("id") or "").strip()
    if not event_id:
        return None
    start, all_day = _event_boundary(row.get("start"))
    end, _ = _event_boundary(row.get("end"))
    raw_attendees = row.get("attendees")
    attendees = tuple(
        str(item.get("email")).strip().lower()
        for item in (raw_attendees if isinstance(raw_attendees, list) else [])
        if isinstance(item, dict) and item.get("email")
    )
    return CalendarEvent(
        event_id=event_id,
        title=str(row.get("summary") or "Untitled event").strip(),
        start=start,
        end=end,
        all_day=all_day,
        location=str(row.get("location") or "").strip() or None,
        description=str(row.get("description") or "").strip() or None,
        attendees=attendees,
        html_link=str(row.get("htmlLink") or "").strip() or None,
    )


def _require_event(payload: dict[str, object], operation: str) -> CalendarEvent:
    event = _to_event(payload)
    if event is None:
        raise DownstreamProviderError(
            f"Google Calendar returned an unexpected {operation}-event payload.",
            "invalid_response",
        )
    return event
