from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qs, urlencode

import requests

from .principal_store import PrincipalStore
from .redaction import redact_sensitive_text
from .token_manager import Principal, RefreshedToken

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)

GOOGLE_SCOPES = (
    "openid",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
)


@dataclass(frozen=True)
class GoogleTokenExchange:
    access_token: str
    refresh_token: str | None
    token_type: str | None
    scope: str | None
    expires_in: int | None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GoogleTokenExchange | None:
        access_token = _opt_str(payload.get("access_token"))
        if access_token is None:
            return None
        lifetime = payload.get("expires_in")
        if isinstance(lifetime, str) and lifetime.isdigit():
            lifetime = int(lifetime)
        return cls(
            access_token=access_token,
            refresh_token=_opt_str(payload.get("refresh_token")),
            token_type=_opt_str(payload.get("token_type")),
            scope=_opt_str(payload.get("scope")),
            expires_in=lifetime if isinstance(lifetime, int) and not isinstance(lifetime, bool) else None,
        )

    def expires_at(self, now: datetime | None = None) -> datetime:
        issued = now or datetime.now(timezone.utc)
        if self.expires_in and self.expires_in > 0:
            return issued + timedelta(seconds=self.expires_in)
        return issued + DEFAULT_TOKEN_LIFETIME


class GoogleOAuthService:
    """Google consent URL, code exchange and token refresh for calendar and mail access."""

    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        timeout_seconds: int = 8,
    ) -> None:
        self.client_id = (client_id or "").strip()
        self.client_secret = (client_secret or "").strip()
        self.redirect_uri = (redirect_uri or "").strip()
        self.timeout_seconds = max(1, int(timeout_seconds))

    def is_configured(self) -> bool:
        return all((self.client_id, self.client_secret, self.redirect_uri))

    def build_authorization_url(self, state: str | None = None) -> str:
        self._ensure_configured()
        query = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            query["state"] = state
        return f"{self.AUTH_URL}?{urlencode(query)}"

    def connect_principal(
        self,
        store: PrincipalStore,
        user_id: str,
        code: str,
        timezone_name: str = "UTC",
    ) -> Principal:
        """Exchange an authorization code and persist the resulting principal."""
        self._ensure_configured()
        exchanged = self.exchange_code(code=code)
        profile = self.fetch_user_info(exchanged.access_token)
        previous = store.get(user_id)
        # Google only returns a refresh token on first consent.
        refresh_token = exchanged.refresh_token or (previous.refresh_token if previous else None)
        principal = Principal(
            user_id=user_id,
            access_token=exchanged.access_token,
            refresh_token=refresh_token,
            token_expiry=exchanged.expires_at(),
            timezone=(timezone_name or "").strip() or "UTC",
            email=_opt_str(profile.get("email")),
            name=_opt_str(profile.get("name")),
        )
        store.put(principal)
        logger.info("Connected Google account for user %s.", user_id)
        return principal

    def refresh_for_principal(self, refresh_token: str) -> RefreshedToken:
        exchanged = self.refresh_access_token(refresh_token)
        return RefreshedToken(
            access_token=exchanged.access_token,
            refresh_token=exchanged.refresh_token,
            expires_at=exchanged.expires_at(),
        )

    def refresh_access_token(self, refresh_token: str) -> GoogleTokenExchange:
        self._ensure_configured()
        return self._grant(
            "refresh_token",
            {"refresh_token": refresh_token.strip()},
            label="Google refresh",
        )

    def exchange_code(self, code: str) -> GoogleTokenExchange:
        return self._grant(
            "authorization_code",
            {"code": code.strip(), "redirect_uri": self.redirect_uri},
            label="Google token exchange",
        )

    def fetch_user_info(self, access_token: str) -> dict[str, Any]:
        response = requests.get(
            self.USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.timeout_seconds,
        )
        if not response.ok:
            raise RuntimeError(f"Google userinfo failed: {_google_error(response)}")
        profile = response.json()
        if not isinstance(profile, dict):
            raise RuntimeError("Google userinfo returned a non-object payload.")
        return profile

    def _grant(self, grant_type: str, fields: dict[str, str], label: str) -> GoogleTokenExchange:
        form = {
            "grant_type": grant_type,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            **fields,
        }
        response = requests.post(self.TOKEN_URL, data=form, timeout=self.timeout_seconds)
        if not response.ok:
            raise RuntimeError(f"{label} failed: {_google_error(response)}")
        payload = response.json()
        exchanged = GoogleTokenExchange.from_payload(payload) if isinstance(payload, dict) else None
        if exchanged is None:
            raise RuntimeError(f"{label} returned no access_token.")
        return exchanged

    def _ensure_configured(self) -> None:
        if not self.is_configured():
            raise RuntimeError(
                "Google OAuth is not configured. "
                "Set GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, and GOOGLE_REDIRECT_URI."
            )


def _opt_str(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def _google_error(response: requests.Response) -> str:
    """Provider error as ``error: description``, from a JSON or form-encoded body."""
    body = response.text.strip()
    try:
        payload = response.json()
    except ValueError:
        payload = {k: v[0] for k, v in parse_qs(body).items()} if "=" in body else None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        description = payload.get("error_description")
        if isinstance(description, str) and description:
            return f"{payload['error']}: {description}"
        return payload["error"]
    return redact_sensitive_text(body) or f"HTTP {response.status_code}"
