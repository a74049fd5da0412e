from __future__ import annotations

import threading
import weakref
from abc import ABC, abstractmethod
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

from .supabase_rest import SupabaseTable

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
_ROLES = {ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT}


@dataclass(frozen=True)
class Message:
    role: str
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"Unsupported message role '{self.role}'.")

    def as_chat_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class PendingTask:
    action: str
    collected_parameters: dict[str, object]
    confidence: float = 0.0
    awaiting_confirmation: bool = False


@dataclass
class ConversationContext:
    user_id: str
    session_id: str
    messages: list[Message] = field(default_factory=list)
    pending_task: PendingTask | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.session_id)


class ContextStore(ABC):
    """Storage capability for conversation contexts, keyed by (user_id, session_id)."""

    @abstractmethod
    def get(self, user_id: str, session_id: str) -> ConversationContext | None:
        raise NotImplementedError

    @abstractmethod
    def put(self, context: ConversationContext) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self, user_id: str, session_id: str) -> None:
        raise NotImplementedError


class InMemoryContextStore(ContextStore):
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], ConversationContext] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, session_id: str) -> ConversationContext | None:
        with self._lock:
            row = self._rows.get((user_id, session_id))
            return deepcopy(row) if row is not None else None

    def put(self, context: ConversationContext) -> None:
        with self._lock:
            self._rows[context.key] = deepcopy(context)

    def clear(self, user_id: str, session_id: str) -> None:
        with self._lock:
            self._rows.pop((user_id, session_id), None)


class SupabaseContextStore(ContextStore):
    """Conversation rows in a Supabase table keyed by (user_id, session_id).

    Messages and the pending task are stored as JSON columns so a session
    survives restarts and is shared between workers.
    """

    def __init__(
        self,
        supabase_url: str | None,
        supabase_service_role_key: str | None,
        table: str = "voicepilot_conversations",
        timeout_seconds: int = 8,
    ) -> None:
        self._table = SupabaseTable(
            supabase_url,
            supabase_service_role_key,
            (table or "").strip() or "voicepilot_conversations",
            timeout_seconds,
        )

    def is_configured(self) -> bool:
        return self._table.is_configured()

    def get(self, user_id: str, session_id: str) -> ConversationContext | None:
        self._ensure_configured()
        row = self._table.select_one(
            "user_id,session_id,messages,pending_task",
            {"user_id": user_id, "session_id": session_id},
            action="fetch conversation",
        )
        if row is None:
            return None
        return ConversationContext(
            user_id=user_id,
            session_id=session_id,
            messages=[_message_from_row(item) for item in row.get("messages") or [] if isinstance(item, dict)],
            pending_task=_pending_from_row(row.get("pending_task")),
        )

    def put(self, context: ConversationContext) -> None:
        self._ensure_configured()
        pending = context.pending_task
        self._table.upsert(
            {
                "user_id": context.user_id,
                "session_id": context.session_id,
                "messages": [
                    {
                        "role": message.role,
                        "content": message.content,
                        "timestamp": message.timestamp.isoformat(),
                    }
                    for message in context.messages
                ],
                "pending_task": asdict(pending) if pending is not None else None,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="user_id,session_id",
            action="upsert conversation",
        )

    def clear(self, user_id: str, session_id: str) -> None:
        self._ensure_configured()
        self._table.delete(
            {"user_id": user_id, "session_id": session_id},
            action="delete conversation",
        )

    def _ensure_configured(self) -> None:
        if self.is_configured():
            return
        raise RuntimeError(
            "Conversation store is not configured. "
            "Set SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, and CONVERSATIONS_TABLE."
        )


def _message_from_row(item: dict[str, Any]) -> Message:
    return Message(
        role=str(item.get("role")),
        content=str(item.get("content") or ""),
        timestamp=_parse_timestamp(item.get("timestamp")),
    )


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, str) and raw:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
    return datetime.now(timezone.utc)


def _pending_from_row(raw: Any) -> PendingTask | None:
    if not isinstance(raw, dict) or not isinstance(raw.get("action"), str):
        return None
    collected = raw.get("collected_parameters")
    return PendingTask(
        action=raw["action"],
        collected_parameters=dict(collected) if isinstance(collected, dict) else {},
        confidence=float(raw.get("confidence") or 0.0),
        awaiting_confirmation=bool(raw.get("awaiting_confirmation")),
    )


class ConversationContextManager:
    """Trimming and session bookkeeping on top of an injected ContextStore."""

    def __init__(
        self,
        store: ContextStore,
        max_messages: int = 10,
        system_prompt: str | None = None,
    ) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1.")
        self._store = store
        self.max_messages = max_messages
        self._system_prompt = (system_prompt or "").strip()
        self._session_locks: weakref.WeakValueDictionary[tuple[str, str], threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._session_locks_guard = threading.Lock()

    def get_or_create(self, user_id: str, session_id: str) -> ConversationContext:
        context = self._store.get(user_id, session_id)
        if context is not None:
            return context
        context = ConversationContext(user_id=user_id, session_id=session_id)
        if self._system_prompt:
            context.messages.append(Message(role=ROLE_SYSTEM, content=self._system_prompt))
        return context

    def append(self, context: ConversationContext, message: Message) -> None:
        context.messages.append(message)
        trim(context, self.max_messages)

    def save(self, context: ConversationContext) -> None:
        self._store.put(context)

    def clear(self, user_id: str, session_id: str) -> None:
        self._store.clear(user_id, session_id)

    def history(self, user_id: str, session_id: str) -> list[Message]:
        context = self._store.get(user_id, session_id)
        if context is None:
            return []
        return [message for message in context.messages if message.role != ROLE_SYSTEM]

    @contextmanager
    def session_lock(self, user_id: str, session_id: str) -> Iterator[None]:
        key = (user_id, session_id)
        with self._session_locks_guard:
            lock = self._session_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._session_locks[key] = lock
        with lock:
            yield


def trim(context: ConversationContext, max_messages: int) -> None:
    """Keep the system message plus the newest ``max_messages - 1`` messages."""
    if max_messages < 1:
        raise ValueError("max_messages must be at least 1.")
    messages = context.messages
    if len(messages) <= max_messages:
        return
    system = next((message for message in messages if message.role == ROLE_SYSTEM), None)
    if system is None:
        context.messages = messages[-max_messages:]
        return
    rest = [message for message in messages if message is not system]
    keep = rest[-(max_messages - 1):] if max_messages > 1 else []
    context.messages = [system, *keep]


def recent_dialogue(context: ConversationContext, limit: int) -> list[Message]:
    dialogue = [message for message in context.messages if message.role != ROLE_SYSTEM]
    if limit <= 0:
        return []
    return dialogue[-limit:]
