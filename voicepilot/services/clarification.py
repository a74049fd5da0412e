from __future__ import annotations

from typing import TYPE_CHECKING

from .actions import CHECK_AVAILABILITY, SCHEDULE_EVENT, SEND_EMAIL, missing_required

if TYPE_CHECKING:
    from .intent_classifier import Intent

FOLLOW_UP_QUESTIONS: dict[tuple[str, str], str] = {
    (SCHEDULE_EVENT, "title"): "What should I call the meeting? Give me a title for it.",
    (SCHEDULE_EVENT, "dateTime"): "When should I schedule it? Tell me the day and time.",
    (CHECK_AVAILABILITY, "date"): "Which day should I check your availability for?",
    (SEND_EMAIL, "recipients"): "Who should I send the email to?",
    (SEND_EMAIL, "subject"): "What should the subject of the email be?",
}


def missing_parameters(intent: Intent) -> list[str]:
    return missing_required(intent.action, intent.parameters)


def needs_more_info(intent: Intent) -> bool:
    return bool(missing_parameters(intent))


def default_follow_up_question(action: str, field_name: str) -> str:
    return FOLLOW_UP_QUESTIONS.get(
        (action, field_name),
        f"I need a bit more detail before I can do that. What is the {field_name}?",
    )
