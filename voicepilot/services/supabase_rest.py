from __future__ import annotations

from typing import Any

import requests

from .redaction import redact_sensitive_text


class SupabaseTable:
    """PostgREST access to one Supabase table with the service-role key."""

    def __init__(
        self,
        supabase_url: str | None,
        supabase_service_role_key: str | None,
        table: str,
        timeout_seconds: int = 8,
    ) -> None:
        self.supabase_url = (supabase_url or "").rstrip("/")
        self.supabase_service_role_key = (supabase_service_role_key or "").strip()
        self.table = (table or "").strip()
        self.timeout_seconds = max(1, int(timeout_seconds))

    def is_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key and self.table)

    def select_one(self, columns: str, filters: dict[str, str], action: str) -> dict[str, Any] | None:
        response = requests.get(
            self.url,
            headers=self._headers(),
            params={"select": columns, **_eq(filters), "limit": "1"},
            timeout=self.timeout_seconds,
        )
        _raise_for_error(response, action)
        rows = response.json()
        if not isinstance(rows, list):
            raise RuntimeError(f"Unexpected payload while trying to {action}.")
        for row in rows:
            if isinstance(row, dict):
                return row
        return None

    def upsert(self, row: dict[str, Any], on_conflict: str, action: str) -> None:
        response = requests.post(
            self.url,
            headers=self._headers(prefer="resolution=merge-duplicates,return=minimal"),
            params={"on_conflict": on_conflict},
            json=row,
            timeout=self.timeout_seconds,
        )
        _raise_for_error(response, action)

    def delete(self, filters: dict[str, str], action: str) -> None:
        response = requests.delete(
            self.url,
            headers=self._headers(prefer="return=minimal"),
            params=_eq(filters),
            timeout=self.timeout_seconds,
        )
        _raise_for_error(response, action)

    @property
    def url(self) -> str:
        return f"{self.supabase_url}/rest/v1/{self.table}"

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.supabase_service_role_key,
            "Authorization": f"Bearer {self.supabase_service_role_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers


def _eq(filters: dict[str, str]) -> dict[str, str]:
    return {column: f"eq.{value}" for column, value in filters.items()}


def _raise_for_error(response: requests.Response, action: str) -> None:
    if response.ok:
        return
    detail = redact_sensitive_text(response.text.strip())
    raise RuntimeError(f"Failed to {action}: HTTP {response.status_code} {detail or 'request failed'}")
