from .base import (
    BusyInterval,
    CalendarEvent,
    CalendarProvider,
    DownstreamProviderError,
    EventDraft,
    MailMessage,
    MailProvider,
    OutgoingMessage,
)
from .google_calendar import GoogleCalendarClient
from .google_gmail import GoogleGmailClient

__all__ = [
    "BusyInterval",
    "CalendarEvent",
    "CalendarProvider",
    "DownstreamProviderError",
    "EventDraft",
    "GoogleCalendarClient",
    "GoogleGmailClient",
    "MailMessage",
    "MailProvider",
    "OutgoingMessage",
]
