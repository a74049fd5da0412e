from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .principal_store import PrincipalStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SKEW = timedelta(minutes=5)


@dataclass
class Principal:
    user_id: str
    access_token: str
    refresh_token: str | None
    token_expiry: datetime | None
    timezone: str = "UTC"
    email: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    refresh_token: str | None
    expires_at: datetime


class AuthFailure(RuntimeError):
    kind = "AuthFailure"


class NoRefreshToken(AuthFailure):
    kind = "NoRefreshToken"


class RefreshFailed(AuthFailure):
    kind = "RefreshFailed"


class TokenLifecycleManager:
    """Hands out access tokens that stay valid for at least ``skew``.

    Refresh is on demand only. Concurrent callers for one principal share a
    lock so a refresh token is never spent twice.
    """

    def __init__(
        self,
        refresh: Callable[[str], RefreshedToken],
        store: PrincipalStore | None = None,
        skew: timedelta = DEFAULT_REFRESH_SKEW,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._refresh = refresh
        self._store = store
        self._skew = skew
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def get_valid_access_token(self, principal: Principal) -> str:
        if self._is_fresh(principal):
            return principal.access_token

        with self._lock_for(principal.user_id):
            if self._is_fresh(principal):
                return principal.access_token
            if self._adopt_stored_credentials(principal):
                return principal.access_token
            if not principal.refresh_token:
                raise NoRefreshToken(
                    f"No refresh token stored for user {principal.user_id}; reconnect required."
                )
            try:
                refreshed = self._refresh(principal.refresh_token)
            except Exception as exc:
                logger.warning("Token refresh failed for user %s: %s", principal.user_id, exc)
                raise RefreshFailed(
                    f"Access token refresh failed for user {principal.user_id}."
                ) from exc

            principal.access_token = refreshed.access_token
            if refreshed.refresh_token:
                principal.refresh_token = refreshed.refresh_token
            principal.token_expiry = refreshed.expires_at
            if self._store is not None:
                try:
                    self._store.put(principal)
                except Exception as exc:
                    # The refreshed token is valid even if persisting it failed.
                    logger.warning(
                        "Could not persist refreshed token for user %s: %s", principal.user_id, exc
                    )
            logger.info(
                "Refreshed access token for user %s (expires %s).",
                principal.user_id,
                refreshed.expires_at.isoformat(),
            )
            return principal.access_token

    def _is_fresh(self, principal: Principal) -> bool:
        return _is_valid_until(principal.token_expiry, self._clock() + self._skew)

    def _adopt_stored_credentials(self, principal: Principal) -> bool:
        # Another instance may already have refreshed this principal.
        if self._store is None:
            return False
        try:
            stored = self._store.get(principal.user_id)
        except Exception as exc:
            logger.warning("Could not read stored credentials for user %s: %s", principal.user_id, exc)
            return False
        if stored is None or stored is principal:
            return False
        if not _is_valid_until(stored.token_expiry, self._clock() + self._skew):
            return False
        principal.access_token = stored.access_token
        principal.refresh_token = stored.refresh_token or principal.refresh_token
        principal.token_expiry = stored.token_expiry
        return True

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock


def _is_valid_until(expiry: datetime | None, cutoff: datetime) -> bool:
    if expiry is None:
        return False
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry > cutoff
