from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from .actions import (
    CANCEL_EVENT,
    CHECK_AVAILABILITY,
    GET_EVENTS,
    SCHEDULE_EVENT,
    SEARCH_EMAIL,
    SEND_EMAIL,
    UPDATE_EVENT,
)
from .clarification import default_follow_up_question
from .context_store import ConversationContext, recent_dialogue

if TYPE_CHECKING:
    from .dispatcher import ActionResult
    from .prefetch import PrefetchedContext

logger = logging.getLogger(__name__)

APOLOGY_REPLY = "I'm sorry, something went wrong on my side. Could you try that again?"
UNCLEAR_REPLY = "I'm sorry, I didn't quite catch that. I can help with your calendar and email."

_ERROR_DESCRIPTIONS = {
    "AuthFailure": "I couldn't access your Google account. Please reconnect it and try again.",
    "UnknownAction": "I'm not able to do that yet.",
    "EventNotFound": "I couldn't find an event matching that in your upcoming calendar.",
    "RecipientNotAllowed": "I'm not allowed to send email to that address.",
    "not_found": "I couldn't find that item anymore. It may have been removed.",
    "unauthorized": "Google rejected my access. Please reconnect your Google account.",
    "forbidden": "Google says I don't have permission to do that.",
    "permission_denied": "Google says I don't have permission to do that.",
    "rate_limited": "Google is asking me to slow down. Please try again in a minute.",
    "timeout": "Google took too long to respond. Please try again.",
    "network_error": "I couldn't reach Google right now. Please try again.",
    "provider_unavailable": "Google is having trouble right now. Please try again shortly.",
}

_ACTION_LABELS = {
    SCHEDULE_EVENT: "schedule that",
    CHECK_AVAILABILITY: "check your availability",
    GET_EVENTS: "look up your events",
    SEND_EMAIL: "send that email",
    SEARCH_EMAIL: "search your email",
    CANCEL_EVENT: "cancel that event",
    UPDATE_EVENT: "update that event",
}

REPLY_INSTRUCTION = (
    "You are a friendly voice assistant for calendar and email. Your words are spoken aloud, "
    "so answer in one to three short sentences, without markdown or lists."
)


class CompletionBackend(Protocol):
    def complete(
        self,
        *,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str: ...


class ResponseGenerator:
    def __init__(self, llm: CompletionBackend | None, context_messages: int = 10) -> None:
        self._llm = llm
        self._context_messages = max(0, context_messages)

    def conversational_reply(
        self,
        utterance: str,
        context: ConversationContext,
        prefetched: PrefetchedContext | None = None,
        user_name: str | None = None,
    ) -> str:
        system = REPLY_INSTRUCTION
        if user_name:
            system += f"\nThe user's name is {user_name}."
        if prefetched is not None:
            rendered = prefetched.render_for_prompt()
            if rendered:
                system += "\n\n" + rendered
        messages = [{"role": "system", "content": system}]
        history = recent_dialogue(context, self._context_messages) if self._context_messages else []
        messages.extend(message.as_chat_message() for message in history)
        if not history or history[-1].content != utterance:
            messages.append({"role": "user", "content": utterance})
        return self._generate(messages, fallback=UNCLEAR_REPLY, temperature=0.7)

    def follow_up_question(
        self,
        action: str,
        field_name: str,
        collected: dict[str, object],
    ) -> str:
        fallback = default_follow_up_question(action, field_name)
        messages = [
            {"role": "system", "content": REPLY_INSTRUCTION},
            {
                "role": "user",
                "content": (
                    f"I am helping the user with '{action}'. Details so far: {collected}. "
                    f"Ask one short question to get the missing '{field_name}'. "
                    "Return only the question."
                ),
            },
        ]
        return self._generate(messages, fallback=fallback, temperature=0.3)

    @staticmethod
    def confirmation_prompt(action: str, parameters: dict[str, object]) -> str:
        if action == CANCEL_EVENT:
            target = parameters.get("eventTitle") or parameters.get("eventId") or "that event"
            return (
                f"Just to confirm, should I cancel '{target}'? "
                "Say yes to go ahead or no to keep it."
            )
        if action == SEND_EMAIL:
            recipients = parameters.get("recipients")
            if isinstance(recipients, (list, tuple)):
                recipients = ", ".join(str(item) for item in recipients)
            return (
                f"Just to confirm, should I send '{parameters.get('subject')}' to {recipients}? "
                "Say yes to send it or no to stop."
            )
        label = _ACTION_LABELS.get(action, action)
        return f"Just to confirm, should I {label}? Say yes to go ahead or no to stop."

    @staticmethod
    def cancelled_reply(action: str) -> str:
        if action == CANCEL_EVENT:
            return "Okay, I'll keep the event as it is."
        return "Okay, I won't do that."

    def action_reply(
        self,
        action: str,
        parameters: dict[str, object],
        result: ActionResult,
    ) -> str:
        if not result.succeeded:
            return describe_error(action, result.error_kind, result.error_message)
        summary = summarize_success(action, result.payload or {})
        messages = [
            {"role": "system", "content": REPLY_INSTRUCTION},
            {
                "role": "user",
                "content": (
                    f"The action '{action}' just succeeded. Facts: {summary} "
                    "Tell the user in natural spoken language. Do not add facts."
                ),
            },
        ]
        return self._generate(messages, fallback=summary, temperature=0.4)

    def compose_email_body(
        self,
        subject: str,
        recipients: tuple[str, ...],
        request_text: str,
        sender_name: str | None = None,
    ) -> str:
        signature = sender_name or ""
        fallback = f"Hi,\n\n{subject}.\n\nBest regards,\n{signature}".rstrip()
        messages = [
            {
                "role": "system",
                "content": "You write short, professional plain-text emails. Return only the body.",
            },
            {
                "role": "user",
                "content": (
                    f"Write an email to {', '.join(recipients)} with subject '{subject}'. "
                    f"The user asked: {request_text}\n"
                    f"Sign it as {signature or 'the sender'}."
                ),
            },
        ]
        return self._generate(messages, fallback=fallback, temperature=0.5, max_tokens=400)

    def _generate(
        self,
        messages: list[dict[str, str]],
        fallback: str,
        temperature: float,
        max_tokens: int = 200,
    ) -> str:
        if self._llm is None:
            return fallback
        try:
            text = self._llm.complete(messages=messages, temperature=temperature, max_tokens=max_tokens)
        except Exception as exc:
            logger.warning("Reply generation failed, using fallback: %s", exc)
            return fallback
        return text.strip() or fallback


def describe_error(action: str, error_kind: str | None, error_message: str | None = None) -> str:
    if error_kind == "InvalidParameters":
        detail = f" {error_message}" if error_message else ""
        return f"Some of the details didn't look right.{detail}"
    if error_kind in _ERROR_DESCRIPTIONS:
        return _ERROR_DESCRIPTIONS[error_kind]
    label = _ACTION_LABELS.get(action, "do that")
    return f"I couldn't {label} right now. Please try again."


def summarize_success(action: str, payload: dict[str, object]) -> str:
    if action in {SCHEDULE_EVENT, UPDATE_EVENT}:
        event = payload.get("event") if isinstance(payload.get("event"), dict) else {}
        verb = "scheduled" if action == SCHEDULE_EVENT else "updated"
        return f"I {verb} '{event.get('title')}' for {spoken_time(event.get('start'))}."
    if action == CANCEL_EVENT:
        return f"I cancelled '{payload.get('title') or 'the event'}'."
    if action == GET_EVENTS:
        events = payload.get("events") if isinstance(payload.get("events"), list) else []
        timeframe = payload.get("timeframe") or "that time"
        if not events:
            return f"You have no events {_timeframe_phrase(str(timeframe))}."
        parts = [f"{row.get('title')} at {spoken_time(row.get('start'))}" for row in events[:5]]
        noun = "event" if len(events) == 1 else "events"
        return f"You have {len(events)} {noun} {_timeframe_phrase(str(timeframe))}: " + "; ".join(parts) + "."
    if action == CHECK_AVAILABILITY:
        return _summarize_availability(payload)
    if action == SEND_EMAIL:
        message = payload.get("message") if isinstance(payload.get("message"), dict) else {}
        recipients = ", ".join(str(item) for item in message.get("recipients") or [])
        return f"I sent '{message.get('subject')}' to {recipients}."
    if action == SEARCH_EMAIL:
        messages = payload.get("messages") if isinstance(payload.get("messages"), list) else []
        if not messages:
            return "I didn't find any matching emails."
        parts = [f"'{row.get('subject')}' from {row.get('from')}" for row in messages[:5]]
        noun = "email" if len(messages) == 1 else "emails"
        return f"I found {len(messages)} {noun}: " + "; ".join(parts) + "."
    return "Done."


def spoken_time(raw: object) -> str:
    if not isinstance(raw, str) or not raw:
        return "an unknown time"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return raw
    return parsed.strftime("%A, %B %d at %I:%M %p").replace(" 0", " ")


def _timeframe_phrase(timeframe: str) -> str:
    if timeframe in {"today", "tomorrow", "this week", "next week"}:
        return timeframe
    return f"for {timeframe}"


def _clock(raw: object) -> str:
    if not isinstance(raw, str):
        return ""
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return raw
    return parsed.strftime("%I:%M %p").lstrip("0")


def _summarize_availability(payload: dict[str, object]) -> str:
    suggestions = payload.get("suggestions") if isinstance(payload.get("suggestions"), list) else []
    options = ", ".join(_clock(row.get("start")) for row in suggestions if isinstance(row, dict))
    if payload.get("requestedStart"):
        if payload.get("available"):
            return f"You're free at {_clock(payload.get('requestedStart'))} on {payload.get('date')}."
        reply = f"You already have something at {_clock(payload.get('requestedStart'))} on {payload.get('date')}."
        if options:
            reply += f" You're free at {options}."
        return reply
    if options:
        return f"On {payload.get('date')} you're free at {options}."
    return f"Your working hours on {payload.get('date')} are fully booked."
