from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from voicepilot.tools.base import CalendarEvent, CalendarProvider, MailMessage, MailProvider
from voicepilot.tools.google_calendar import event_time_label

from .time_parsing import resolve_timeframe
from .token_manager import Principal, TokenLifecycleManager

logger = logging.getLogger(__name__)

RECENT_EVENTS_LIMIT = 10
RECENT_EMAILS_LIMIT = 5


@dataclass(frozen=True)
class PrefetchedContext:
    recent_events: list[CalendarEvent] = field(default_factory=list)
    recent_emails: list[MailMessage] = field(default_factory=list)
    today_events: list[CalendarEvent] = field(default_factory=list)
    week_events: list[CalendarEvent] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.recent_events or self.recent_emails or self.today_events or self.week_events)

    def render_for_prompt(self) -> str:
        if self.is_empty():
            return ""
        sections = ["USER DATA SNAPSHOT"]
        sections.append(_render_events("Today's events", self.today_events))
        sections.append(_render_events("This week's events", self.week_events))
        sections.append(_render_events("Upcoming events", self.recent_events))
        lines = ["Recent emails:"]
        if not self.recent_emails:
            lines.append("- none")
        for message in self.recent_emails:
            flag = " (unread)" if message.unread else ""
            lines.append(f"- {message.subject} from {message.sender}{flag}")
        sections.append("\n".join(lines))
        return "\n".join(sections)


class ContextPrefetcher:
    def __init__(
        self,
        calendar: CalendarProvider,
        mail: MailProvider,
        token_manager: TokenLifecycleManager,
        max_workers: int = 4,
    ) -> None:
        self._calendar = calendar
        self._mail = mail
        self._token_manager = token_manager
        self._max_workers = max(1, max_workers)

    def prefetch(self, principal: Principal, now: datetime | None = None) -> PrefetchedContext:
        current = now or datetime.now(timezone.utc)
        zone_name = principal.timezone or "UTC"
        today_start, today_end, _ = resolve_timeframe("today", zone_name, current)
        week_start, week_end, _ = resolve_timeframe("this week", zone_name, current)

        reads: dict[str, Callable[[str], list]] = {
            "recent_events": lambda token: self._calendar.list_events(
                token, current, current + timedelta(days=7), max_results=RECENT_EVENTS_LIMIT
            ),
            "recent_emails": lambda token: self._mail.search_messages(
                token, "in:inbox", max_results=RECENT_EMAILS_LIMIT
            ),
            "today_events": lambda token: self._calendar.list_events(token, today_start, today_end),
            "week_events": lambda token: self._calendar.list_events(token, week_start, week_end),
        }
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {
                name: pool.submit(self._read, name, principal, read) for name, read in reads.items()
            }
            results = {name: future.result() for name, future in futures.items()}
        return PrefetchedContext(**results)

    def _read(self, name: str, principal: Principal, read: Callable[[str], list]) -> list:
        try:
            token = self._token_manager.get_valid_access_token(principal)
            return list(read(token))
        except Exception as exc:
            logger.warning("Context prefetch '%s' failed for user %s: %s", name, principal.user_id, exc)
            return []


def _render_events(label: str, events: list[CalendarEvent]) -> str:
    lines = [f"{label}:"]
    if not events:
        lines.append("- none")
    for event in events:
        lines.append(f"- {event.title} ({event_time_label(event)}) [id: {event.event_id}]")
    return "\n".join(lines)
