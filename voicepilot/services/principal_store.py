from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from .supabase_rest import SupabaseTable
from .token_manager import Principal


class PrincipalStore(ABC):
    @abstractmethod
    def get(self, user_id: str) -> Principal | None:
        raise NotImplementedError

    @abstractmethod
    def put(self, principal: Principal) -> None:
        raise NotImplementedError


class InMemoryPrincipalStore(PrincipalStore):
    def __init__(self) -> None:
        self._rows: dict[str, Principal] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Principal | None:
        with self._lock:
            row = self._rows.get(user_id)
            return replace(row) if row is not None else None

    def put(self, principal: Principal) -> None:
        with self._lock:
            self._rows[principal.user_id] = replace(principal)


class SupabasePrincipalStore(PrincipalStore):
    """Principal records in a Supabase table, one row per user_id."""

    def __init__(
        self,
        supabase_url: str | None,
        supabase_service_role_key: str | None,
        table: str = "voicepilot_principals",
        timeout_seconds: int = 8,
    ) -> None:
        self._table = SupabaseTable(
            supabase_url,
            supabase_service_role_key,
            (table or "").strip() or "voicepilot_principals",
            timeout_seconds,
        )

    def is_configured(self) -> bool:
        return self._table.is_configured()

    def get(self, user_id: str) -> Principal | None:
        self._ensure_configured()
        row = self._table.select_one(
            "user_id,access_token,refresh_token,token_expiry,timezone,email,name",
            {"user_id": user_id},
            action="fetch principal",
        )
        return _to_principal(row) if row is not None else None

    def put(self, principal: Principal) -> None:
        self._ensure_configured()
        self._table.upsert(
            {
                "user_id": principal.user_id,
                "access_token": principal.access_token,
                "refresh_token": principal.refresh_token,
                "token_expiry": _to_iso(principal.token_expiry),
                "timezone": principal.timezone,
                "email": principal.email,
                "name": principal.name,
            },
            on_conflict="user_id",
            action="upsert principal",
        )

    def _ensure_configured(self) -> None:
        if self.is_configured():
            return
        raise RuntimeError(
            "Principal store is not configured. "
            "Set SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, and PRINCIPALS_TABLE."
        )


def _to_principal(row: dict[str, Any]) -> Principal:
    return Principal(
        user_id=str(row.get("user_id", "")),
        access_token=str(row.get("access_token") or ""),
        refresh_token=_opt_str(row.get("refresh_token")),
        token_expiry=_parse_time(row.get("token_expiry")),
        timezone=_opt_str(row.get("timezone")) or "UTC",
        email=_opt_str(row.get("email")),
        name=_opt_str(row.get("name")),
    )


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value != "" else None


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
