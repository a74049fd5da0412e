from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from .actions import CANCEL_EVENT, CONVERSATIONAL_ACTIONS
from .clarification import missing_parameters
from .confirmation_intent import CANCEL, CONFIRM, classify_confirmation_reply
from .context_store import (
    ROLE_ASSISTANT,
    ROLE_USER,
    ConversationContext,
    ConversationContextManager,
    Message,
    PendingTask,
)
from .dispatcher import ActionDispatcher, ActionResult
from .intent_classifier import Intent, IntentClassifier
from .prefetch import PrefetchedContext
from .responder import APOLOGY_REPLY, ResponseGenerator
from .token_manager import Principal

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.7


@dataclass(frozen=True)
class TurnRequest:
    user_id: str
    session_id: str
    utterance: str
    principal: Principal
    prefetched: PrefetchedContext | None = None


@dataclass(frozen=True)
class TurnAction:
    type: str
    parameters: dict[str, object]


@dataclass(frozen=True)
class TurnResult:
    reply: str
    action: TurnAction | None = None
    action_result: ActionResult | None = None
    should_refresh_downstream_data: bool = False

    def to_payload(self) -> dict[str, object]:
        out: dict[str, object] = {
            "reply": self.reply,
            "shouldRefreshDownstreamData": self.should_refresh_downstream_data,
        }
        if self.action is not None:
            out["action"] = {"type": self.action.type, "parameters": self.action.parameters}
        if self.action_result is not None:
            out["actionResult"] = self.action_result.to_payload()
        return out


class Orchestrator:
    def __init__(
        self,
        contexts: ConversationContextManager,
        classifier: IntentClassifier,
        dispatcher: ActionDispatcher,
        responder: ResponseGenerator,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        confirm_actions: tuple[str, ...] = (CANCEL_EVENT,),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._contexts = contexts
        self._classifier = classifier
        self._dispatcher = dispatcher
        self._responder = responder
        self._threshold = confidence_threshold
        self._confirm_actions = set(confirm_actions)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def handle_turn(self, request: TurnRequest) -> TurnResult:
        with self._contexts.session_lock(request.user_id, request.session_id):
            context: ConversationContext | None = None
            try:
                context = self._contexts.get_or_create(request.user_id, request.session_id)
                self._contexts.append(context, Message(role=ROLE_USER, content=request.utterance))
                result = self._run_turn(request, context)
                self._contexts.append(context, Message(role=ROLE_ASSISTANT, content=result.reply))
                self._contexts.save(context)
                return result
            except Exception:
                logger.exception(
                    "Turn failed for user %s session %s.", request.user_id, request.session_id
                )
                self._persist_apology(context)
                return TurnResult(reply=APOLOGY_REPLY)

    def history(self, user_id: str, session_id: str) -> list[Message]:
        return self._contexts.history(user_id, session_id)

    def clear_context(self, user_id: str, session_id: str) -> None:
        with self._contexts.session_lock(user_id, session_id):
            self._contexts.clear(user_id, session_id)

    def _run_turn(self, request: TurnRequest, context: ConversationContext) -> TurnResult:
        pending = context.pending_task
        if pending is not None and pending.awaiting_confirmation:
            context.pending_task = None
            decision = classify_confirmation_reply(request.utterance, pending.action)
            if decision.intent == CONFIRM:
                return self._dispatch(pending.action, pending.collected_parameters, request)
            if decision.intent == CANCEL:
                return TurnResult(reply=self._responder.cancelled_reply(pending.action))

        intent = self._classifier.classify(
            request.utterance,
            context,
            prefetched=request.prefetched,
            timezone_name=request.principal.timezone,
            now=self._clock(),
        )

        if intent.confidence <= self._threshold or intent.action in CONVERSATIONAL_ACTIONS:
            context.pending_task = None
            return TurnResult(reply=self._conversational_reply(intent, request, context))

        missing = missing_parameters(intent)
        if missing:
            context.pending_task = PendingTask(
                action=intent.action,
                collected_parameters=dict(intent.parameters),
                confidence=intent.confidence,
            )
            return TurnResult(
                reply=self._responder.follow_up_question(intent.action, missing[0], intent.parameters),
                action=TurnAction(type=intent.action, parameters=dict(intent.parameters)),
            )

        if intent.action in self._confirm_actions:
            context.pending_task = PendingTask(
                action=intent.action,
                collected_parameters=dict(intent.parameters),
                confidence=intent.confidence,
                awaiting_confirmation=True,
            )
            return TurnResult(
                reply=self._responder.confirmation_prompt(intent.action, intent.parameters),
                action=TurnAction(type=intent.action, parameters=dict(intent.parameters)),
            )

        context.pending_task = None
        return self._dispatch(intent.action, intent.parameters, request)

    def _dispatch(
        self,
        action: str,
        parameters: dict[str, object],
        request: TurnRequest,
    ) -> TurnResult:
        result = self._dispatcher.execute(
            action, parameters, request.principal, request_text=request.utterance
        )
        return TurnResult(
            reply=self._responder.action_reply(action, parameters, result),
            action=TurnAction(type=action, parameters=dict(parameters)),
            action_result=result,
            should_refresh_downstream_data=result.should_refresh_downstream_data,
        )

    def _conversational_reply(
        self,
        intent: Intent,
        request: TurnRequest,
        context: ConversationContext,
    ) -> str:
        if intent.reply and intent.action in CONVERSATIONAL_ACTIONS:
            return intent.reply
        return self._responder.conversational_reply(
            request.utterance,
            context,
            prefetched=request.prefetched,
            user_name=request.principal.name,
        )

    def _persist_apology(self, context: ConversationContext | None) -> None:
        if context is None:
            return
        try:
            self._contexts.append(context, Message(role=ROLE_ASSISTANT, content=APOLOGY_REPLY))
            self._contexts.save(context)
        except Exception:
            logger.exception("Could not persist apology for session %s.", context.session_id)
