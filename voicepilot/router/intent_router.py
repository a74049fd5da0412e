from dataclasses import dataclass
import re

from voicepilot.services.actions import CALENDAR_ACTIONS, EMAIL_ACTIONS

CALENDAR_TERMS = (
    "calendar",
    "schedule",
    "meeting",
    "event",
    "appointment",
    "my events",
    "my day",
    "agenda",
    "am i free",
    "free time",
    "availability",
    "available",
    "busy",
    "reschedule",
    "move my",
    "cancel my",
    "book",
)

EMAIL_TERMS = (
    "email",
    "e-mail",
    "gmail",
    "inbox",
    "mail",
    "message",
    "unread",
    "reply",
    "send a note",
)


@dataclass(frozen=True)
class RouteDecision:
    domain: str
    reason: str
    confidence: float


def decide_domain(user_text: str) -> RouteDecision:
    text = re.sub(r"\s+", " ", (user_text or "").strip().lower())
    if not text:
        return RouteDecision(domain="chat", reason="empty_text", confidence=0.0)
    if _matches_explicit_calendar_write_intent(text):
        return RouteDecision(
            domain="calendar",
            reason="matched_explicit_calendar_write_intent",
            confidence=0.97,
        )
    if _matches_explicit_email_intent(text):
        return RouteDecision(
            domain="email",
            reason="matched_explicit_email_intent",
            confidence=0.95,
        )
    if any(term in text for term in CALENDAR_TERMS):
        return RouteDecision(domain="calendar", reason="matched_calendar_term", confidence=0.9)
    if any(term in text for term in EMAIL_TERMS):
        return RouteDecision(domain="email", reason="matched_email_term", confidence=0.88)
    return RouteDecision(domain="chat", reason="default_chat", confidence=0.0)


def keyword_confidence(user_text: str, action: str) -> float:
    """Deterministic confidence used when the classifier reports none."""
    decision = decide_domain(user_text)
    if action in CALENDAR_ACTIONS and decision.domain == "calendar":
        return decision.confidence
    if action in EMAIL_ACTIONS and decision.domain == "email":
        return decision.confidence
    return 0.0


def _matches_explicit_calendar_write_intent(text: str) -> bool:
    if re.search(
        r"\b(add|create|schedule|book|set up|put)\b.*\b(my|the|this|that|it)\b.*\bcalendar\b",
        text,
    ):
        return True
    if re.search(r"\b(cancel|delete|remove|move|reschedule)\b.*\b(meeting|event|appointment)\b", text):
        return True
    return bool(
        re.search(r"\b(add|create|schedule|book|set up)\b.*\b(meeting|event|appointment|call)\b", text)
    )


def _matches_explicit_email_intent(text: str) -> bool:
    return bool(
        re.search(r"\b(read|open|show|list|check|search|find)\b.*\b(email|emails|inbox|mail)\b", text)
        or re.search(r"\b(draft|compose|write)\b.*\b(reply|email)\b", text)
        or re.search(r"\b(send|sned|snd)\b.*\b(email|gmail|message|note)\b", text)
        or re.search(r"\b(send|sned|snd)\b.*[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,}", text)
    )
