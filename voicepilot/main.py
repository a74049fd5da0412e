from __future__ import annotations

import logging
from datetime import timedelta

import uvicorn
from fastapi import FastAPI, HTTPException, Query

from voicepilot.config import settings
from voicepilot.models import (
    ActionResultModel,
    GoogleAuthorizeUrlResponse,
    GoogleConnectRequest,
    GoogleConnectResponse,
    HistoryResponse,
    MessageModel,
    TurnActionModel,
    TurnRequestBody,
    TurnResponse,
)
from voicepilot.services.context_store import (
    ContextStore,
    ConversationContextManager,
    InMemoryContextStore,
    SupabaseContextStore,
)
from voicepilot.services.dispatcher import ActionDispatcher
from voicepilot.services.google_oauth import GoogleOAuthService
from voicepilot.services.intent_classifier import IntentClassifier
from voicepilot.services.llm_client import OpenAICompatibleClient, OpenAICompatibleConfig
from voicepilot.services.orchestrator import Orchestrator, TurnRequest, TurnResult
from voicepilot.services.prefetch import ContextPrefetcher
from voicepilot.services.principal_store import (
    InMemoryPrincipalStore,
    PrincipalStore,
    SupabasePrincipalStore,
)
from voicepilot.services.responder import ResponseGenerator
from voicepilot.services.token_manager import Principal, TokenLifecycleManager
from voicepilot.tools import GoogleCalendarClient, GoogleGmailClient

if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="VoicePilot API", version="0.1.0")


def _build_llm() -> OpenAICompatibleClient | None:
    key = (settings.llm_api_key or "").strip()
    if not key:
        logger.warning("No LLM API key configured; intents will degrade to conversation only.")
        return None
    return OpenAICompatibleClient(
        OpenAICompatibleConfig(
            provider=settings.llm_provider,
            model=settings.llm_model,
            api_key=key,
            api_base_url=settings.llm_api_base_url,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    )


def _build_principal_store() -> PrincipalStore:
    store = SupabasePrincipalStore(
        supabase_url=settings.supabase_url,
        supabase_service_role_key=settings.supabase_service_role_key,
        table=settings.principals_table,
        timeout_seconds=settings.principals_timeout_seconds,
    )
    if store.is_configured():
        return store
    logger.warning("Supabase is not configured; principals are kept in memory only.")
    return InMemoryPrincipalStore()


def _build_context_store() -> ContextStore:
    store = SupabaseContextStore(
        supabase_url=settings.supabase_url,
        supabase_service_role_key=settings.supabase_service_role_key,
        table=settings.conversations_table,
        timeout_seconds=settings.principals_timeout_seconds,
    )
    if store.is_configured():
        return store
    logger.warning("Supabase is not configured; conversations are kept in memory only.")
    return InMemoryContextStore()


def _build_orchestrator(
    llm: OpenAICompatibleClient | None,
    token_manager: TokenLifecycleManager,
    calendar: GoogleCalendarClient,
    mail: GoogleGmailClient,
) -> Orchestrator:
    responder = ResponseGenerator(llm=llm, context_messages=settings.classifier_context_messages)
    return Orchestrator(
        contexts=ConversationContextManager(
            store=_build_context_store(),
            max_messages=settings.context_max_messages,
        ),
        classifier=IntentClassifier(
            llm=llm,
            context_messages=settings.classifier_context_messages,
        ),
        dispatcher=ActionDispatcher(
            calendar=calendar,
            mail=mail,
            token_manager=token_manager,
            email_composer=responder,
            allowed_recipient_domains=settings.mail_allowed_recipient_domains,
        ),
        responder=responder,
        confidence_threshold=settings.intent_confidence_threshold,
        confirm_actions=settings.confirm_actions,
    )


llm = _build_llm()
principal_store = _build_principal_store()
google_oauth = GoogleOAuthService(
    client_id=settings.google_client_id,
    client_secret=settings.google_client_secret,
    redirect_uri=settings.google_redirect_uri,
    timeout_seconds=settings.google_oauth_timeout_seconds,
)
token_manager = TokenLifecycleManager(
    refresh=google_oauth.refresh_for_principal,
    store=principal_store,
    skew=timedelta(seconds=settings.token_refresh_skew_seconds),
)
calendar_client = GoogleCalendarClient(timeout_seconds=settings.google_api_timeout_seconds)
gmail_client = GoogleGmailClient(timeout_seconds=settings.google_api_timeout_seconds)
prefetcher = (
    ContextPrefetcher(calendar=calendar_client, mail=gmail_client, token_manager=token_manager)
    if settings.prefetch_enabled
    else None
)
orchestrator = _build_orchestrator(llm, token_manager, calendar_client, gmail_client)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/v1/assistant/sessions/{session_id}/turns", response_model=TurnResponse)
def turn_route(session_id: str, payload: TurnRequestBody) -> TurnResponse:
    utterance = payload.utterance.strip()
    if not utterance:
        raise HTTPException(status_code=400, detail="Utterance text is required.")
    principal = _require_principal(payload.user_id)
    prefetched = prefetcher.prefetch(principal) if prefetcher is not None else None
    result = orchestrator.handle_turn(
        TurnRequest(
            user_id=payload.user_id,
            session_id=session_id,
            utterance=utterance,
            principal=principal,
            prefetched=prefetched,
        )
    )
    return _to_turn_response(session_id, result)


@app.get("/v1/assistant/sessions/{session_id}/messages", response_model=HistoryResponse)
def history_route(session_id: str, user_id: str = Query(min_length=1)) -> HistoryResponse:
    messages = orchestrator.history(user_id, session_id)
    return HistoryResponse(
        session_id=session_id,
        messages=[
            MessageModel(
                role=message.role,
                content=message.content,
                timestamp=message.timestamp.isoformat(),
            )
            for message in messages
        ],
    )


@app.delete("/v1/assistant/sessions/{session_id}")
def clear_session_route(session_id: str, user_id: str = Query(min_length=1)) -> dict[str, object]:
    orchestrator.clear_context(user_id, session_id)
    return {"session_id": session_id, "cleared": True}


@app.get(
    "/v1/assistant/integrations/google/authorize-url",
    response_model=GoogleAuthorizeUrlResponse,
)
def google_authorize_url(state: str | None = None) -> GoogleAuthorizeUrlResponse:
    _require_google_oauth()
    return GoogleAuthorizeUrlResponse(url=google_oauth.build_authorization_url(state=state))


@app.post("/v1/assistant/integrations/google/connect", response_model=GoogleConnectResponse)
def google_connect(payload: GoogleConnectRequest) -> GoogleConnectResponse:
    _require_google_oauth()
    try:
        principal = google_oauth.connect_principal(
            store=principal_store,
            user_id=payload.user_id,
            code=payload.code,
            timezone_name=payload.timezone or "UTC",
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return GoogleConnectResponse(
        user_id=principal.user_id,
        email=principal.email,
        timezone=principal.timezone,
        expires_at=principal.token_expiry.isoformat() if principal.token_expiry else None,
    )


def _require_principal(user_id: str) -> Principal:
    try:
        principal = principal_store.get(user_id)
    except Exception as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if principal is None:
        raise HTTPException(
            status_code=404,
            detail="No connected Google account for this user. Connect Google first.",
        )
    return principal


def _require_google_oauth() -> None:
    if google_oauth.is_configured():
        return
    raise HTTPException(
        status_code=503,
        detail=(
            "Google OAuth is not configured. "
            "Set GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, and GOOGLE_REDIRECT_URI."
        ),
    )


def _to_turn_response(session_id: str, result: TurnResult) -> TurnResponse:
    action = None
    if result.action is not None:
        action = TurnActionModel(type=result.action.type, parameters=result.action.parameters)
    action_result = None
    if result.action_result is not None:
        action_result = ActionResultModel(
            succeeded=result.action_result.succeeded,
            payload=result.action_result.payload,
            error_kind=result.action_result.error_kind,
            error_message=result.action_result.error_message,
        )
    return TurnResponse(
        session_id=session_id,
        reply=result.reply,
        action=action,
        action_result=action_result,
        should_refresh_downstream_data=result.should_refresh_downstream_data,
    )


def run() -> None:
    uvicorn.run("voicepilot.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
