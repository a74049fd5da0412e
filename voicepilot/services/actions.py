from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Union

SCHEDULE_EVENT = "schedule_event"
CHECK_AVAILABILITY = "check_availability"
GET_EVENTS = "get_events"
SEND_EMAIL = "send_email"
SEARCH_EMAIL = "search_email"
CANCEL_EVENT = "cancel_event"
UPDATE_EVENT = "update_event"
GENERAL = "general"
NONE = "none"

DISPATCHABLE_ACTIONS = (
    SCHEDULE_EVENT,
    CHECK_AVAILABILITY,
    GET_EVENTS,
    SEND_EMAIL,
    SEARCH_EMAIL,
    CANCEL_EVENT,
    UPDATE_EVENT,
)
CONVERSATIONAL_ACTIONS = {GENERAL, NONE}
SIDE_EFFECT_ACTIONS = {SCHEDULE_EVENT, UPDATE_EVENT, CANCEL_EVENT, SEND_EMAIL}
CALENDAR_ACTIONS = {SCHEDULE_EVENT, CHECK_AVAILABILITY, GET_EVENTS, CANCEL_EVENT, UPDATE_EVENT}
EMAIL_ACTIONS = {SEND_EMAIL, SEARCH_EMAIL}

REQUIRED_PARAMETERS: dict[str, tuple[str, ...]] = {
    SCHEDULE_EVENT: ("title", "dateTime"),
    CHECK_AVAILABILITY: ("date",),
    SEND_EMAIL: ("recipients", "subject"),
}

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 24 * 60

_EMAIL_PATTERN = re.compile(r"^[A-Z0-9._%+\-]+@[A-Z0-9.\-]+\.[A-Z]{2,}$", re.IGNORECASE)


class UnknownAction(ValueError):
    def __init__(self, action: str) -> None:
        super().__init__(f"Action '{action}' is not recognized.")
        self.action = action


class InvalidParameters(ValueError):
    pass


@dataclass(frozen=True)
class ScheduleEventParams:
    title: str
    date_time: str
    duration_minutes: int | None = None
    attendees: tuple[str, ...] = ()
    location: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class CheckAvailabilityParams:
    date: str
    start_time: str | None = None
    end_time: str | None = None
    duration_minutes: int | None = None


@dataclass(frozen=True)
class GetEventsParams:
    timeframe: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    query: str | None = None


@dataclass(frozen=True)
class SendEmailParams:
    recipients: tuple[str, ...]
    subject: str
    body: str | None = None
    cc: tuple[str, ...] = ()


@dataclass(frozen=True)
class SearchEmailParams:
    query: str | None = None
    max_results: int | None = None
    unread_only: bool = False


@dataclass(frozen=True)
class CancelEventParams:
    event_id: str | None = None
    event_title: str | None = None


@dataclass(frozen=True)
class UpdateEventParams:
    event_id: str | None = None
    event_title: str | None = None
    title: str | None = None
    date_time: str | None = None
    duration_minutes: int | None = None
    location: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class GeneralParams:
    message: str | None = None


ActionParameters = Union[
    ScheduleEventParams,
    CheckAvailabilityParams,
    GetEventsParams,
    SendEmailParams,
    SearchEmailParams,
    CancelEventParams,
    UpdateEventParams,
    GeneralParams,
]


def _string(description: str) -> dict[str, object]:
    return {"type": "string", "description": description}


def _integer(description: str) -> dict[str, object]:
    return {"type": "integer", "description": description}


def _string_list(description: str) -> dict[str, object]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


_CONFIDENCE_PROPERTY = {
    "type": "number",
    "description": "How sure you are (0.0-1.0) that the user wants this action now.",
}

ACTION_DESCRIPTIONS: dict[str, str] = {
    SCHEDULE_EVENT: "Create a new calendar event or meeting.",
    CHECK_AVAILABILITY: "Check whether the user is free on a day or at a time.",
    GET_EVENTS: "List the user's calendar events for a timeframe.",
    SEND_EMAIL: "Send an email on the user's behalf.",
    SEARCH_EMAIL: "Search or list the user's emails.",
    CANCEL_EVENT: "Cancel (delete) an existing calendar event.",
    UPDATE_EVENT: "Change an existing calendar event (time, title, location).",
    GENERAL: "Answer conversationally when no calendar or email action applies.",
}

ACTION_PROPERTIES: dict[str, dict[str, dict[str, object]]] = {
    SCHEDULE_EVENT: {
        "title": _string("Event title."),
        "dateTime": _string("Start date and time, ISO 8601 when known, else the user's words."),
        "durationMinutes": _integer("Duration in minutes."),
        "attendees": _string_list("Attendee email addresses."),
        "location": _string("Event location."),
        "description": _string("Event description."),
    },
    CHECK_AVAILABILITY: {
        "date": _string("Day to check, ISO date (YYYY-MM-DD) or the user's words."),
        "startTime": _string("Start of the requested slot, e.g. 14:00."),
        "endTime": _string("End of the requested slot, e.g. 15:00."),
        "durationMinutes": _integer("Meeting length in minutes."),
    },
    GET_EVENTS: {
        "timeframe": _string("today, tomorrow, this week, next week, or a weekday."),
        "startDate": _string("Start date (YYYY-MM-DD) for a custom range."),
        "endDate": _string("End date (YYYY-MM-DD) for a custom range."),
        "query": _string("Free-text filter on event titles."),
    },
    SEND_EMAIL: {
        "recipients": _string_list("Recipient email addresses."),
        "subject": _string("Email subject."),
        "body": _string("Email body."),
        "cc": _string_list("CC email addresses."),
    },
    SEARCH_EMAIL: {
        "query": _string("Gmail search query, e.g. from:alice subject:invoice."),
        "maxResults": _integer("Maximum number of emails to return."),
        "unreadOnly": {"type": "boolean", "description": "Only unread emails."},
    },
    CANCEL_EVENT: {
        "eventId": _string("Calendar event id when known."),
        "eventTitle": _string("Title of the event to cancel."),
    },
    UPDATE_EVENT: {
        "eventId": _string("Calendar event id when known."),
        "eventTitle": _string("Current title of the event to change."),
        "title": _string("New title."),
        "dateTime": _string("New start date and time."),
        "durationMinutes": _integer("New duration in minutes."),
        "location": _string("New location."),
        "description": _string("New description."),
    },
    GENERAL: {
        "message": _string("Response message to the user."),
    },
}


def build_tool_definitions() -> list[dict[str, object]]:
    """Function definitions offered to the completion backend, one per action."""
    tools: list[dict[str, object]] = []
    for action in (*DISPATCHABLE_ACTIONS, GENERAL):
        properties = dict(ACTION_PROPERTIES[action])
        properties["confidence"] = _CONFIDENCE_PROPERTY
        tools.append(
            {
                "type": "function",
                "function": {
                    "name": action,
                    "description": ACTION_DESCRIPTIONS[action],
                    "parameters": {
                        "type": "object",
                        "properties": properties,
                        "required": ["confidence"],
                    },
                },
            }
        )
    return tools


def render_actions_for_prompt() -> str:
    lines = ["RECOGNIZED ACTIONS"]
    for action in (*DISPATCHABLE_ACTIONS, GENERAL):
        required = REQUIRED_PARAMETERS.get(action, ())
        suffix = f" Required: {', '.join(required)}." if required else ""
        lines.append(f"- {action}: {ACTION_DESCRIPTIONS[action]}{suffix}")
        for name, schema in ACTION_PROPERTIES[action].items():
            lines.append(f"  - {name} ({schema.get('type')}): {schema.get('description')}")
    return "\n".join(lines)


def has_value(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set)):
        return bool(value)
    return True


def missing_required(action: str, parameters: dict[str, object]) -> list[str]:
    return [
        name
        for name in REQUIRED_PARAMETERS.get(action, ())
        if not has_value(parameters.get(name))
    ]


def parse_action_parameters(action: str, parameters: dict[str, Any]) -> ActionParameters:
    """Validate raw classifier arguments into the typed variant for ``action``."""
    if not isinstance(parameters, dict):
        raise InvalidParameters(f"Parameters for '{action}' must be an object.")
    missing = missing_required(action, parameters)
    if missing:
        raise InvalidParameters(
            f"Action '{action}' missing required parameter(s): {', '.join(missing)}."
        )
    p = parameters
    if action == SCHEDULE_EVENT:
        return ScheduleEventParams(
            title=_req_str(p, "title"),
            date_time=_req_str(p, "dateTime"),
            duration_minutes=_opt_duration(p, "durationMinutes"),
            attendees=_email_list(p, "attendees"),
            location=_opt_str(p, "location"),
            description=_opt_str(p, "description"),
        )
    if action == CHECK_AVAILABILITY:
        return CheckAvailabilityParams(
            date=_req_str(p, "date"),
            start_time=_opt_str(p, "startTime"),
            end_time=_opt_str(p, "endTime"),
            duration_minutes=_opt_duration(p, "durationMinutes"),
        )
    if action == GET_EVENTS:
        return GetEventsParams(
            timeframe=_opt_str(p, "timeframe"),
            start_date=_opt_str(p, "startDate"),
            end_date=_opt_str(p, "endDate"),
            query=_opt_str(p, "query"),
        )
    if action == SEND_EMAIL:
        recipients = _email_list(p, "recipients")
        if not recipients:
            raise InvalidParameters("At least one recipient is required.")
        return SendEmailParams(
            recipients=recipients,
            subject=_req_str(p, "subject"),
            body=_opt_str(p, "body") or _opt_str(p, "message"),
            cc=_email_list(p, "cc"),
        )
    if action == SEARCH_EMAIL:
        return SearchEmailParams(
            query=_opt_str(p, "query"),
            max_results=_opt_int(p, "maxResults"),
            unread_only=_opt_bool(p, "unreadOnly"),
        )
    if action == CANCEL_EVENT:
        return CancelEventParams(
            event_id=_opt_str(p, "eventId"),
            event_title=_opt_str(p, "eventTitle") or _opt_str(p, "eventIdentifier"),
        )
    if action == UPDATE_EVENT:
        return UpdateEventParams(
            event_id=_opt_str(p, "eventId"),
            event_title=_opt_str(p, "eventTitle") or _opt_str(p, "eventIdentifier"),
            title=_opt_str(p, "title"),
            date_time=_opt_str(p, "dateTime"),
            duration_minutes=_opt_duration(p, "durationMinutes"),
            location=_opt_str(p, "location"),
            description=_opt_str(p, "description"),
        )
    if action in CONVERSATIONAL_ACTIONS:
        return GeneralParams(message=_opt_str(p, "message"))
    raise UnknownAction(action)


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_PATTERN.match((value or "").strip()))


def _req_str(params: dict[str, Any], key: str) -> str:
    value = _opt_str(params, key)
    if value is None:
        raise InvalidParameters(f"Parameter '{key}' must be a non-empty string.")
    return value


def _opt_str(params: dict[str, Any], key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise InvalidParameters(f"Parameter '{key}' must be a string.")
    cleaned = value.strip()
    return cleaned or None


def _opt_int(params: dict[str, Any], key: str) -> int | None:
    value = params.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidParameters(f"Parameter '{key}' must be an integer.")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise InvalidParameters(f"Parameter '{key}' must be an integer.")


def _opt_duration(params: dict[str, Any], key: str) -> int | None:
    value = _opt_int(params, key)
    if value is not None and not MIN_DURATION_MINUTES <= value <= MAX_DURATION_MINUTES:
        raise InvalidParameters(
            f"Parameter '{key}' must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes."
        )
    return value


def _opt_bool(params: dict[str, Any], key: str) -> bool:
    value = params.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return False


def _email_list(params: dict[str, Any], key: str) -> tuple[str, ...]:
    value = params.get(key)
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        raw = [part for part in re.split(r"[,;\s]+", value) if part]
    elif isinstance(value, (list, tuple)):
        raw = []
        for item in value:
            if not isinstance(item, str):
                raise InvalidParameters(f"Parameter '{key}' must contain strings.")
            if item.strip():
                raw.append(item.strip())
    else:
        raise InvalidParameters(f"Parameter '{key}' must be a list of email addresses.")
    invalid = [item for item in raw if not is_valid_email(item)]
    if invalid:
        raise InvalidParameters(f"Invalid email addresses: {', '.join(invalid)}")
    return tuple(item.lower() for item in raw)
