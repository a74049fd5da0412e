from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


class DownstreamProviderError(RuntimeError):
    """A calendar or mail provider call failed; ``category`` is the provider's error kind."""

    def __init__(self, message: str, category: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code


@dataclass(frozen=True)
class CalendarEvent:
    event_id: str
    title: str
    start: datetime | None
    end: datetime | None
    all_day: bool = False
    location: str | None = None
    description: str | None = None
    attendees: tuple[str, ...] = ()
    html_link: str | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.event_id,
            "title": self.title,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "allDay": self.all_day,
            "location": self.location,
            "description": self.description,
            "attendees": list(self.attendees),
            "htmlLink": self.html_link,
        }


@dataclass(frozen=True)
class EventDraft:
    title: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    location: str | None = None
    description: str | None = None
    attendees: tuple[str, ...] = ()


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class MailMessage:
    message_id: str
    thread_id: str
    sender: str
    subject: str
    snippet: str
    recipients: tuple[str, ...] = ()
    received_at: str | None = None
    unread: bool = False

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.message_id,
            "threadId": self.thread_id,
            "from": self.sender,
            "subject": self.subject,
            "to": list(self.recipients),
            "snippet": self.snippet,
            "date": self.received_at,
            "unread": self.unread,
        }


@dataclass(frozen=True)
class OutgoingMessage:
    recipients: tuple[str, ...]
    subject: str
    body: str
    cc: tuple[str, ...] = field(default_factory=tuple)


class CalendarProvider(ABC):
    @abstractmethod
    def list_events(
        self,
        access_token: str,
        start: datetime,
        end: datetime,
        query: str | None = None,
        max_results: int = 25,
    ) -> list[CalendarEvent]:
        raise NotImplementedError

    @abstractmethod
    def create_event(self, access_token: str, draft: EventDraft, timezone_name: str) -> CalendarEvent:
        raise NotImplementedError

    @abstractmethod
    def update_event(
        self,
        access_token: str,
        event_id: str,
        draft: EventDraft,
        timezone_name: str,
    ) -> CalendarEvent:
        raise NotImplementedError

    @abstractmethod
    def delete_event(self, access_token: str, event_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def busy_intervals(
        self,
        access_token: str,
        start: datetime,
        end: datetime,
        timezone_name: str,
    ) -> list[BusyInterval]:
        raise NotImplementedError


class MailProvider(ABC):
    @abstractmethod
    def search_messages(
        self,
        access_token: str,
        query: str,
        max_results: int = 10,
    ) -> list[MailMessage]:
        raise NotImplementedError

    @abstractmethod
    def send_message(self, access_token: str, message: OutgoingMessage) -> dict[str, object]:
        raise NotImplementedError
