from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

from voicepilot.router.intent_router import keyword_confidence

from .actions import (
    DISPATCHABLE_ACTIONS,
    GENERAL,
    NONE,
    build_tool_definitions,
    has_value,
    missing_required,
    render_actions_for_prompt,
)
from .context_store import ROLE_USER, ConversationContext, recent_dialogue
from .llm_client import ToolCallCompletion

if TYPE_CHECKING:
    from .prefetch import PrefetchedContext

logger = logging.getLogger(__name__)


class ToolCallingBackend(Protocol):
    def complete_with_tools(
        self,
        *,
        messages: list[dict[str, str]],
        tools: list[dict[str, object]],
        temperature: float,
        max_tokens: int,
    ) -> ToolCallCompletion: ...


@dataclass(frozen=True)
class Intent:
    action: str
    confidence: float
    parameters: dict[str, object] = field(default_factory=dict)
    reply: str | None = None
    source: str = "llm"


def no_intent(source: str = "fallback") -> Intent:
    return Intent(action=NONE, confidence=0.0, parameters={}, source=source)


CLASSIFIER_INSTRUCTION = (
    "You are the intent classifier of a voice assistant that manages the user's "
    "calendar and email.\n"
    "Call exactly one function that matches what the user wants right now, with the "
    "parameters you can extract from the conversation. Never invent parameter values "
    "the user did not give; leave them out instead.\n"
    "Always include a calibrated confidence between 0.0 and 1.0. Use a low confidence "
    "when the request is ambiguous, misheard, or only small talk.\n"
    "Use the general function for questions or chat that need no calendar or email action.\n"
    "Prefer ISO 8601 for dates and times when you can resolve them from the current time; "
    "otherwise copy the user's words (for example 'tomorrow at 3pm')."
)


class IntentClassifier:
    def __init__(
        self,
        llm: ToolCallingBackend | None,
        context_messages: int = 10,
        max_tokens: int = 400,
    ) -> None:
        self._llm = llm
        self._context_messages = max(0, context_messages)
        self._max_tokens = max_tokens
        self._tools = build_tool_definitions()

    def classify(
        self,
        utterance: str,
        context: ConversationContext,
        prefetched: PrefetchedContext | None = None,
        timezone_name: str = "UTC",
        now: datetime | None = None,
    ) -> Intent:
        if self._llm is None:
            logger.warning("Intent classification skipped: no completion backend configured.")
            return no_intent(source="unconfigured")
        try:
            completion = self._llm.complete_with_tools(
                messages=self._build_messages(
                    utterance=utterance,
                    context=context,
                    prefetched=prefetched,
                    timezone_name=timezone_name,
                    now=now or datetime.now(timezone.utc),
                ),
                tools=self._tools,
                temperature=0.1,
                max_tokens=self._max_tokens,
            )
            intent = self._to_intent(utterance, context, completion)
        except Exception as exc:
            logger.warning("Intent classification failed, degrading to no action: %s", exc)
            return no_intent()
        return self._merge_pending(intent, context)

    def _build_messages(
        self,
        *,
        utterance: str,
        context: ConversationContext,
        prefetched: PrefetchedContext | None,
        timezone_name: str,
        now: datetime,
    ) -> list[dict[str, str]]:
        sections = [
            CLASSIFIER_INSTRUCTION,
            render_actions_for_prompt(),
            f"Current time: {now.isoformat()} (user timezone: {timezone_name})",
        ]
        if prefetched is not None:
            rendered = prefetched.render_for_prompt()
            if rendered:
                sections.append(rendered)
        pending = context.pending_task
        if pending is not None and not pending.awaiting_confirmation:
            missing = missing_required(pending.action, pending.collected_parameters)
            sections.append(
                "PENDING TASK\n"
                f"The user is completing a '{pending.action}' request.\n"
                f"Already collected: {json.dumps(pending.collected_parameters, default=str)}\n"
                f"Still missing: {', '.join(missing) or 'nothing'}\n"
                f"If the new message supplies missing details, call {pending.action} "
                "with only the newly provided parameters."
            )

        history = recent_dialogue(context, self._context_messages + 1)
        if history and history[-1].role == ROLE_USER and history[-1].content == utterance:
            history = history[:-1]
        history = history[-self._context_messages:] if self._context_messages else []

        messages = [{"role": "system", "content": "\n\n".join(sections)}]
        messages.extend(message.as_chat_message() for message in history)
        messages.append({"role": "user", "content": utterance})
        return messages

    def _to_intent(
        self,
        utterance: str,
        context: ConversationContext,
        completion: ToolCallCompletion,
    ) -> Intent:
        if completion.tool_name is None:
            # Free text only: conversational, never executable.
            return Intent(
                action=GENERAL,
                confidence=0.0,
                parameters={},
                reply=completion.content or None,
            )

        arguments = dict(completion.arguments or {})
        raw_confidence = arguments.pop("confidence", None)
        action = completion.tool_name.strip().lower()
        parameters = {key: value for key, value in arguments.items() if has_value(value)}

        confidence = _coerce_confidence(raw_confidence)
        source = "llm"
        if confidence is None:
            confidence = self._proxy_confidence(utterance, action, context)
            source = "keyword_proxy"

        reply = completion.content or None
        if action == GENERAL and isinstance(parameters.get("message"), str):
            reply = str(parameters["message"])
        if action not in DISPATCHABLE_ACTIONS and action not in {GENERAL, NONE}:
            logger.warning("Classifier returned unrecognized action '%s'.", action)
        return Intent(
            action=action,
            confidence=confidence,
            parameters=parameters,
            reply=reply,
            source=source,
        )

    @staticmethod
    def _proxy_confidence(utterance: str, action: str, context: ConversationContext) -> float:
        pending = context.pending_task
        if pending is not None and pending.action == action:
            return max(pending.confidence, keyword_confidence(utterance, action))
        return keyword_confidence(utterance, action)

    @staticmethod
    def _merge_pending(intent: Intent, context: ConversationContext) -> Intent:
        pending = context.pending_task
        if pending is None or pending.awaiting_confirmation or pending.action != intent.action:
            return intent
        merged = dict(pending.collected_parameters)
        merged.update(intent.parameters)
        return Intent(
            action=intent.action,
            confidence=intent.confidence,
            parameters=merged,
            reply=intent.reply,
            source=intent.source,
        )


def _coerce_confidence(raw: object) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return 0.0
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value
