from .context_store import (
    ConversationContext,
    ConversationContextManager,
    InMemoryContextStore,
    Message,
    PendingTask,
)
from .google_oauth import GoogleOAuthService
from .principal_store import InMemoryPrincipalStore, PrincipalStore, SupabasePrincipalStore
from .token_manager import (
    AuthFailure,
    NoRefreshToken,
    Principal,
    RefreshedToken,
    RefreshFailed,
    TokenLifecycleManager,
)

__all__ = [
    "AuthFailure",
    "ConversationContext",
    "ConversationContextManager",
    "GoogleOAuthService",
    "InMemoryContextStore",
    "InMemoryPrincipalStore",
    "Message",
    "NoRefreshToken",
    "PendingTask",
    "Principal",
    "PrincipalStore",
    "RefreshedToken",
    "RefreshFailed",
    "SupabasePrincipalStore",
    "TokenLifecycleManager",
    "Orchestrator",
    "TurnRequest",
    "TurnResult",
]


def __getattr__(name: str):
    if name in {"Orchestrator", "TurnRequest", "TurnResult"}:
        from .orchestrator import Orchestrator, TurnRequest, TurnResult

        return {
            "Orchestrator": Orchestrator,
            "TurnRequest": TurnRequest,
            "TurnResult": TurnResult,
        }[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
