from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from voicepilot.tools.base import (
    CalendarEvent,
    CalendarProvider,
    DownstreamProviderError,
    EventDraft,
    MailProvider,
    OutgoingMessage,
)

from .actions import (
    CANCEL_EVENT,
    CHECK_AVAILABILITY,
    DISPATCHABLE_ACTIONS,
    GET_EVENTS,
    SCHEDULE_EVENT,
    SEARCH_EMAIL,
    SEND_EMAIL,
    SIDE_EFFECT_ACTIONS,
    UPDATE_EVENT,
    CancelEventParams,
    CheckAvailabilityParams,
    GetEventsParams,
    InvalidParameters,
    ScheduleEventParams,
    SearchEmailParams,
    SendEmailParams,
    UpdateEventParams,
    parse_action_parameters,
)
from .availability import build_report
from .time_parsing import (
    DEFAULT_DURATION_MINUTES,
    day_bounds,
    find_day,
    parse_iso_datetime,
    resolve_clock_time,
    resolve_date_time,
    resolve_timeframe,
    resolve_zone,
)
from .token_manager import AuthFailure, Principal, TokenLifecycleManager

logger = logging.getLogger(__name__)

EVENT_LOOKUP_WINDOW = timedelta(days=30)
DEFAULT_SEARCH_RESULTS = 10
MAX_SEARCH_RESULTS = 25


class EventNotFound(LookupError):
    kind = "EventNotFound"


class RecipientNotAllowed(ValueError):
    kind = "RecipientNotAllowed"


class EmailComposer(Protocol):
    def compose_email_body(
        self,
        subject: str,
        recipients: tuple[str, ...],
        request_text: str,
        sender_name: str | None = None,
    ) -> str: ...


@dataclass(frozen=True)
class ActionResult:
    succeeded: bool
    payload: dict[str, object] | None = None
    error_kind: str | None = None
    error_message: str | None = None
    should_refresh_downstream_data: bool = False

    @classmethod
    def failure(cls, error_kind: str, error_message: str) -> ActionResult:
        return cls(succeeded=False, error_kind=error_kind, error_message=error_message)

    def to_payload(self) -> dict[str, object]:
        out: dict[str, object] = {"succeeded": self.succeeded}
        if self.payload is not None:
            out["payload"] = self.payload
        if self.error_kind is not None:
            out["errorKind"] = self.error_kind
            out["errorMessage"] = self.error_message
        return out


class ActionDispatcher:
    """Runs one validated action against the calendar or mail provider.

    Every failure comes back as a failed ``ActionResult``; nothing is retried.
    """

    def __init__(
        self,
        calendar: CalendarProvider,
        mail: MailProvider,
        token_manager: TokenLifecycleManager,
        email_composer: EmailComposer | None = None,
        allowed_recipient_domains: tuple[str, ...] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._calendar = calendar
        self._mail = mail
        self._token_manager = token_manager
        self._email_composer = email_composer
        self._allowed_domains = {domain.strip().lower() for domain in allowed_recipient_domains if domain}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handlers = {
            SCHEDULE_EVENT: self._schedule_event,
            CHECK_AVAILABILITY: self._check_availability,
            GET_EVENTS: self._get_events,
            SEND_EMAIL: self._send_email,
            SEARCH_EMAIL: self._search_email,
            CANCEL_EVENT: self._cancel_event,
            UPDATE_EVENT: self._update_event,
        }

    def execute(
        self,
        action: str,
        parameters: dict[str, object],
        principal: Principal,
        request_text: str = "",
    ) -> ActionResult:
        if action not in DISPATCHABLE_ACTIONS:
            logger.error("Refusing to dispatch unrecognized action '%s'.", action)
            return ActionResult.failure("UnknownAction", f"Action '{action}' is not recognized.")
        try:
            params = parse_action_parameters(action, parameters)
            if isinstance(params, SendEmailParams):
                self._enforce_recipient_policy(params)
        except InvalidParameters as exc:
            return ActionResult.failure("InvalidParameters", str(exc))
        except RecipientNotAllowed as exc:
            return ActionResult.failure(RecipientNotAllowed.kind, str(exc))

        try:
            token = self._token_manager.get_valid_access_token(principal)
        except AuthFailure as exc:
            logger.warning("Action %s blocked for user %s: %s", action, principal.user_id, exc)
            return ActionResult.failure("AuthFailure", f"{exc.kind}: {exc}")

        try:
            payload = self._handlers[action](token, params, principal, request_text)
        except DownstreamProviderError as exc:
            logger.warning("Action %s failed for user %s (%s): %s", action, principal.user_id, exc.category, exc)
            return ActionResult.failure(exc.category, str(exc))
        except EventNotFound as exc:
            return ActionResult.failure(EventNotFound.kind, str(exc))
        except InvalidParameters as exc:
            return ActionResult.failure("InvalidParameters", str(exc))

        return ActionResult(
            succeeded=True,
            payload=payload,
            should_refresh_downstream_data=action in SIDE_EFFECT_ACTIONS,
        )

    def _schedule_event(
        self,
        token: str,
        params: ScheduleEventParams,
        principal: Principal,
        request_text: str,
    ) -> dict[str, object]:
        start, end = resolve_date_time(
            params.date_time, principal.timezone, self._clock(), params.duration_minutes
        )
        event = self._calendar.create_event(
            token,
            EventDraft(
                title=params.title,
                start=start,
                end=end,
                location=params.location,
                description=params.description,
                attendees=params.attendees,
            ),
            principal.timezone,
        )
        return {"event": event.to_payload()}

    def _check_availability(
        self,
        token: str,
        params: CheckAvailabilityParams,
        principal: Principal,
        request_text: str,
    ) -> dict[str, object]:
        zone = resolve_zone(principal.timezone)
        now = self._clock().astimezone(zone)
        duration = timedelta(minutes=params.duration_minutes or DEFAULT_DURATION_MINUTES)

        requested_start = parse_iso_datetime(params.date, zone)
        day = requested_start.date() if requested_start else find_day(params.date, now.date())
        clock = resolve_clock_time(params.start_time or "")
        if params.start_time and clock is None:
            raise InvalidParameters(f"Could not understand start time '{params.start_time}'.")
        if clock is None and requested_start is None:
            clock = resolve_clock_time(params.date)
        if day is None:
            if clock is None:
                raise InvalidParameters(f"Could not understand the date '{params.date}'.")
            day = now.date()
        if clock is not None:
            requested_start = datetime.combine(day, clock, tzinfo=zone)

        requested_end = None
        if requested_start is not None:
            requested_end = requested_start + duration
            end_clock = resolve_clock_time(params.end_time or "")
            if end_clock is not None:
                candidate = datetime.combine(day, end_clock, tzinfo=zone)
                if candidate > requested_start:
                    requested_end = candidate
                    duration = candidate - requested_start

        window_start, window_end = day_bounds(day, zone)
        busy = self._calendar.busy_intervals(token, window_start, window_end, principal.timezone)
        report = build_report(day, zone, busy, requested_start, requested_end, duration, now=now)
        return report.to_payload()

    def _get_events(
        self,
        token: str,
        params: GetEventsParams,
        principal: Principal,
        request_text: str,
    ) -> dict[str, object]:
        start, end, label = resolve_timeframe(
            params.timeframe,
            principal.timezone,
            self._clock(),
            start_date=params.start_date,
            end_date=params.end_date,
        )
        events = self._calendar.list_events(token, start, end, query=params.query)
        return {
            "timeframe": label,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "events": [event.to_payload() for event in events],
            "count": len(events),
        }

    def _send_email(
        self,
        token: str,
        params: SendEmailParams,
        principal: Principal,
        request_text: str,
    ) -> dict[str, object]:
        body = params.body
        if not body:
            if self._email_composer is not None:
                body = self._email_composer.compose_email_body(
                    params.subject, params.recipients, request_text, principal.name
                )
            else:
                body = params.subject
        sent = self._mail.send_message(
            token,
            OutgoingMessage(
                recipients=params.recipients,
                subject=params.subject,
                body=body,
                cc=params.cc,
            ),
        )
        return {"message": sent}

    def _search_email(
        self,
        token: str,
        params: SearchEmailParams,
        principal: Principal,
        request_text: str,
    ) -> dict[str, object]:
        query = params.query or "in:inbox"
        if params.unread_only and "is:unread" not in query:
            query = f"{query} is:unread"
        limit = min(MAX_SEARCH_RESULTS, max(1, params.max_results or DEFAULT_SEARCH_RESULTS))
        messages = self._mail.search_messages(token, query, max_results=limit)
        return {
            "query": query,
            "messages": [message.to_payload() for message in messages],
            "count": len(messages),
        }

    def _cancel_event(
        self,
        token: str,
        params: CancelEventParams,
        principal: Principal,
        request_text: str,
    ) -> dict[str, object]:
        event_id, event = self._resolve_event(token, params.event_id, params.event_title)
        self._calendar.delete_event(token, event_id)
        title = event.title if event is not None else params.event_title
        return {"eventId": event_id, "title": title}

    def _update_event(
        self,
        token: str,
        params: UpdateEventParams,
        principal: Principal,
        request_text: str,
    ) -> dict[str, object]:
        event_id, existing = self._resolve_event(token, params.event_id, params.event_title)
        start = end = None
        if params.date_time:
            start, end = resolve_date_time(
                params.date_time, principal.timezone, self._clock(), params.duration_minutes
            )
        elif params.duration_minutes and existing is not None and existing.start is not None:
            start = existing.start
            end = existing.start + timedelta(minutes=params.duration_minutes)
        draft = EventDraft(
            title=params.title,
            start=start,
            end=end,
            location=params.location,
            description=params.description,
        )
        if draft == EventDraft():
            raise InvalidParameters("Tell me what to change about the event.")
        updated = self._calendar.update_event(token, event_id, draft, principal.timezone)
        return {"event": updated.to_payload()}

    def _resolve_event(
        self,
        token: str,
        event_id: str | None,
        event_title: str | None,
    ) -> tuple[str, CalendarEvent | None]:
        if event_id:
            return event_id, None
        if not event_title:
            raise InvalidParameters("Either eventId or eventTitle is required.")
        now = self._clock()
        candidates = self._calendar.list_events(token, now, now + EVENT_LOOKUP_WINDOW, query=event_title)
        needle = event_title.strip().lower()
        for event in candidates:
            if needle in event.title.lower():
                return event.event_id, event
        raise EventNotFound(f"No upcoming event matches '{event_title}'.")

    def _enforce_recipient_policy(self, params: SendEmailParams) -> None:
        if not self._allowed_domains:
            return
        blocked = [
            address
            for address in (*params.recipients, *params.cc)
            if address.rsplit("@", 1)[-1] not in self._allowed_domains
        ]
        if blocked:
            raise RecipientNotAllowed(
                "Recipient domain is not allowed by policy. "
                f"Recipients: {', '.join(blocked)}. Allowed domains: {', '.join(sorted(self._allowed_domains))}"
            )
