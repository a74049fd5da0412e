from __future__ import annotations

from dataclasses import dataclass

from .actions import CANCEL_EVENT, SEND_EMAIL

CONFIRM = "confirm"
CANCEL = "cancel"
UNKNOWN = "unknown"

_REFUSAL_TOKENS = {"no", "nope", "nah", "stop", "abort", "dont", "don't", "keep"}
_REFUSAL_PHRASES = ("never mind", "nevermind", "forget it", "not now", "leave it")
_CONFIRM_TOKENS = {"yes", "yeah", "yep", "yup", "confirm", "confirmed", "ok", "okay", "sure", "proceed"}
_CONFIRM_PHRASES = ("go ahead", "do it", "please do", "sounds good")

# Verbs that confirm when they repeat the pending action itself ("cancel it", "send it").
_ACTION_VERBS = {
    CANCEL_EVENT: {"cancel", "delete", "remove"},
    SEND_EMAIL: {"send"},
}


@dataclass(frozen=True)
class ConfirmationIntent:
    intent: str
    confidence: float
    normalized_text: str
    reason: str


def classify_confirmation_reply(text: str, pending_action: str) -> ConfirmationIntent:
    normalized = _normalize_reply_text(text)
    if not normalized:
        return ConfirmationIntent(UNKNOWN, 0.0, normalized, "empty_reply")

    tokens = normalized.split(" ")
    token_set = set(tokens)
    action_verbs = _ACTION_VERBS.get(pending_action, set())

    if token_set & _REFUSAL_TOKENS or any(phrase in normalized for phrase in _REFUSAL_PHRASES):
        return ConfirmationIntent(CANCEL, 0.9, normalized, "refusal_token")
    if "cancel" in token_set and "cancel" not in action_verbs:
        return ConfirmationIntent(CANCEL, 0.9, normalized, "cancel_token")

    if token_set & _CONFIRM_TOKENS or any(phrase in normalized for phrase in _CONFIRM_PHRASES):
        return ConfirmationIntent(CONFIRM, 0.88, normalized, "confirm_token")
    if len(tokens) <= 3 and token_set & action_verbs:
        return ConfirmationIntent(CONFIRM, 0.82, normalized, "short_action_confirm")

    return ConfirmationIntent(UNKNOWN, 0.0, normalized, "no_clear_intent")


def _normalize_reply_text(text: str) -> str:
    raw = (text or "").strip().lower()
    if not raw:
        return ""
    raw = raw.replace("’", "'")
    for ch in ".,!?;:":
        raw = raw.replace(ch, " ")
    return " ".join(raw.split())
