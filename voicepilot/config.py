import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(override=False)


def _as_bool(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _as_float(raw: str | None, default: float) -> float:
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _as_csv(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    llm_provider: str
    llm_model: str
    llm_api_key: str | None
    llm_api_base_url: str | None
    llm_timeout_seconds: int
    classifier_context_messages: int
    context_max_messages: int
    intent_confidence_threshold: float
    token_refresh_skew_seconds: int
    confirm_actions: tuple[str, ...]
    prefetch_enabled: bool
    google_client_id: str | None
    google_client_secret: str | None
    google_redirect_uri: str | None
    google_oauth_timeout_seconds: int
    google_api_timeout_seconds: int
    supabase_url: str | None
    supabase_service_role_key: str | None
    principals_table: str
    principals_timeout_seconds: int
    conversations_table: str
    mail_allowed_recipient_domains: tuple[str, ...]
    log_level: str
    host: str
    port: int


def load_settings() -> Settings:
    provider = os.getenv("VOICEPILOT_LLM_PROVIDER", "openai").strip().lower()
    default_model = "llama-3.1-8b-instant" if provider == "groq" else "gpt-4o-mini"
    return Settings(
        llm_provider=provider,
        llm_model=os.getenv("VOICEPILOT_LLM_MODEL") or default_model,
        llm_api_key=(
            os.getenv("VOICEPILOT_LLM_API_KEY")
            or os.getenv("OPENAI_API_KEY")
            or os.getenv("GROQ_API_KEY")
            or None
        ),
        llm_api_base_url=(os.getenv("VOICEPILOT_LLM_API_BASE_URL") or None),
        llm_timeout_seconds=_as_int(os.getenv("VOICEPILOT_LLM_TIMEOUT_SECONDS"), 12),
        classifier_context_messages=max(
            2,
            min(30, _as_int(os.getenv("VOICEPILOT_CLASSIFIER_CONTEXT_MESSAGES"), 10)),
        ),
        context_max_messages=max(
            2,
            min(200, _as_int(os.getenv("VOICEPILOT_CONTEXT_MAX_MESSAGES"), 10)),
        ),
        intent_confidence_threshold=max(
            0.0,
            min(1.0, _as_float(os.getenv("VOICEPILOT_INTENT_CONFIDENCE_THRESHOLD"), 0.7)),
        ),
        token_refresh_skew_seconds=max(
            0, _as_int(os.getenv("VOICEPILOT_TOKEN_REFRESH_SKEW_SECONDS"), 300)
        ),
        confirm_actions=_as_csv(os.getenv("VOICEPILOT_CONFIRM_ACTIONS", "cancel_event")),
        prefetch_enabled=_as_bool(os.getenv("VOICEPILOT_PREFETCH_ENABLED"), True),
        google_client_id=(os.getenv("GOOGLE_CLIENT_ID") or None),
        google_client_secret=(os.getenv("GOOGLE_CLIENT_SECRET") or None),
        google_redirect_uri=(os.getenv("GOOGLE_REDIRECT_URI") or None),
        google_oauth_timeout_seconds=_as_int(
            os.getenv("GOOGLE_OAUTH_TIMEOUT_SECONDS"), 8
        ),
        google_api_timeout_seconds=_as_int(os.getenv("GOOGLE_API_TIMEOUT_SECONDS"), 8),
        supabase_url=(os.getenv("SUPABASE_URL") or None),
        supabase_service_role_key=(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None),
        principals_table=os.getenv("PRINCIPALS_TABLE", "voicepilot_principals"),
        principals_timeout_seconds=_as_int(os.getenv("PRINCIPALS_TIMEOUT_SECONDS"), 8),
        conversations_table=os.getenv("CONVERSATIONS_TABLE", "voicepilot_conversations"),
        mail_allowed_recipient_domains=_as_csv(os.getenv("MAIL_ALLOWED_RECIPIENT_DOMAINS")),
        log_level=os.getenv("VOICEPILOT_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        host=os.getenv("VOICEPILOT_HOST", "127.0.0.1"),
        port=_as_int(os.getenv("VOICEPILOT_PORT"), 8000),
    )


settings = load_settings()
