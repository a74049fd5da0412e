import threading
import time
import unittest
from datetime import datetime, timedelta, timezone

from voicepilot.services.principal_store import InMemoryPrincipalStore
from voicepilot.services.token_manager import (
    AuthFailure,
    NoRefreshToken,
    Principal,
    RefreshedToken,
    RefreshFailed,
    TokenLifecycleManager,
)

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class _FakeRefresher:
    def __init__(self, result: RefreshedToken | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[str] = []

    def __call__(self, refresh_token: str) -> RefreshedToken:
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


class _RecordingStore(InMemoryPrincipalStore):
    def __init__(self) -> None:
        super().__init__()
        self.puts = 0

    def put(self, principal: Principal) -> None:
        self.puts += 1
        super().put(principal)


class _UnavailableStore(InMemoryPrincipalStore):
    def get(self, user_id: str) -> Principal | None:
        raise RuntimeError("Failed to fetch principal: HTTP 503")

    def put(self, principal: Principal) -> None:
        raise RuntimeError("Failed to store principal: HTTP 503")


def _principal(expires_in: timedelta | None, refresh_token: str | None = "refresh-1") -> Principal:
    return Principal(
        user_id="user-1",
        access_token="access-old",
        refresh_token=refresh_token,
        token_expiry=NOW + expires_in if expires_in is not None else None,
        timezone="America/New_York",
    )


class TokenLifecycleManagerTests(unittest.TestCase):
    def _manager(self, refresher, store=None) -> TokenLifecycleManager:
        return TokenLifecycleManager(refresh=refresher, store=store, clock=lambda: NOW)

    def test_token_valid_beyond_skew_is_returned_without_refresh(self):
        refresher = _FakeRefresher()
        principal = _principal(timedelta(minutes=10))

        token = self._manager(refresher).get_valid_access_token(principal)

        self.assertEqual(token, "access-old")
        self.assertEqual(refresher.calls, [])

    def test_token_inside_skew_window_triggers_refresh(self):
        refresher = _FakeRefresher(
            RefreshedToken(
                access_token="access-new",
                refresh_token=None,
                expires_at=NOW + timedelta(hours=1),
            )
        )
        principal = _principal(timedelta(minutes=4))

        token = self._manager(refresher).get_valid_access_token(principal)

        self.assertEqual(token, "access-new")
        self.assertEqual(refresher.calls, ["refresh-1"])
        self.assertEqual(principal.token_expiry, NOW + timedelta(hours=1))

    def test_missing_refresh_token_is_reported(self):
        principal = _principal(timedelta(minutes=-1), refresh_token=None)

        with self.assertRaises(NoRefreshToken) as ctx:
            self._manager(_FakeRefresher()).get_valid_access_token(principal)

        self.assertIsInstance(ctx.exception, AuthFailure)
        self.assertEqual(ctx.exception.kind, "NoRefreshToken")

    def test_refresh_failure_raises_and_keeps_stale_token_out_of_store(self):
        store = _RecordingStore()
        refresher = _FakeRefresher(error=RuntimeError("invalid_grant"))
        principal = _principal(timedelta(minutes=-30))

        with self.assertRaises(RefreshFailed) as ctx:
            self._manager(refresher, store).get_valid_access_token(principal)

        self.assertEqual(ctx.exception.kind, "RefreshFailed")
        self.assertEqual(store.puts, 0)
        self.assertEqual(principal.access_token, "access-old")

    def test_refresh_keeps_refresh_token_when_provider_omits_it(self):
        refresher = _FakeRefresher(
            RefreshedToken(access_token="access-new", refresh_token=None, expires_at=NOW + timedelta(hours=1))
        )
        principal = _principal(None)

        self._manager(refresher).get_valid_access_token(principal)

        self.assertEqual(principal.refresh_token, "refresh-1")

    def test_refresh_replaces_rotated_refresh_token_and_persists(self):
        store = _RecordingStore()
        refresher = _FakeRefresher(
            RefreshedToken(
                access_token="access-new",
                refresh_token="refresh-2",
                expires_at=NOW + timedelta(hours=1),
            )
        )
        principal = _principal(timedelta(minutes=1))

        self._manager(refresher, store).get_valid_access_token(principal)

        stored = store.get("user-1")
        self.assertEqual(store.puts, 1)
        self.assertEqual(stored.access_token, "access-new")
        self.assertEqual(stored.refresh_token, "refresh-2")

    def test_fresher_stored_credentials_are_adopted_without_refresh(self):
        store = InMemoryPrincipalStore()
        store.put(
            Principal(
                user_id="user-1",
                access_token="access-from-other-worker",
                refresh_token="refresh-1",
                token_expiry=NOW + timedelta(minutes=50),
            )
        )
        refresher = _FakeRefresher()
        principal = _principal(timedelta(minutes=2))

        token = self._manager(refresher, store).get_valid_access_token(principal)

        self.assertEqual(token, "access-from-other-worker")
        self.assertEqual(refresher.calls, [])

    def test_naive_expiry_is_treated_as_utc(self):
        principal = _principal(None)
        principal.token_expiry = (NOW + timedelta(minutes=30)).replace(tzinfo=None)
        refresher = _FakeRefresher()

        token = self._manager(refresher).get_valid_access_token(principal)

        self.assertEqual(token, "access-old")
        self.assertEqual(refresher.calls, [])

    def test_unreadable_store_falls_through_to_refresh(self):
        refresher = _FakeRefresher(
            RefreshedToken(access_token="access-new", refresh_token=None, expires_at=NOW + timedelta(hours=1))
        )
        store = _UnavailableStore()

        with self.assertLogs("voicepilot.services.token_manager", level="WARNING"):
            token = self._manager(refresher, store=store).get_valid_access_token(
                _principal(timedelta(minutes=-1))
            )

        self.assertEqual(token, "access-new")
        self.assertEqual(refresher.calls, ["refresh-1"])

    def test_failed_persist_still_returns_refreshed_token(self):
        refresher = _FakeRefresher(
            RefreshedToken(access_token="access-new", refresh_token="refresh-2", expires_at=NOW + timedelta(hours=1))
        )
        principal = _principal(timedelta(minutes=-1))

        with self.assertLogs("voicepilot.services.token_manager", level="WARNING") as logs:
            token = self._manager(refresher, store=_UnavailableStore()).get_valid_access_token(principal)

        self.assertEqual(token, "access-new")
        self.assertEqual(principal.refresh_token, "refresh-2")
        self.assertTrue(any("persist" in line for line in logs.output))

    def test_unreadable_store_with_failed_refresh_is_auth_failure(self):
        refresher = _FakeRefresher(error=RuntimeError("invalid_grant"))

        with self.assertRaises(RefreshFailed):
            self._manager(refresher, store=_UnavailableStore()).get_valid_access_token(
                _principal(timedelta(minutes=-1))
            )

    def test_idle_principal_locks_are_released(self):
        refresher = _FakeRefresher(
            RefreshedToken(access_token="access-new", refresh_token=None, expires_at=NOW + timedelta(hours=1))
        )
        manager = self._manager(refresher)

        manager.get_valid_access_token(_principal(timedelta(minutes=-1)))

        self.assertEqual(len(manager._locks), 0)

    def test_concurrent_callers_share_one_refresh(self):
        calls: list[str] = []

        def slow_refresh(refresh_token: str) -> RefreshedToken:
            calls.append(refresh_token)
            time.sleep(0.05)
            return RefreshedToken(
                access_token="access-new",
                refresh_token=None,
                expires_at=NOW + timedelta(hours=1),
            )

        manager = self._manager(slow_refresh)
        principal = _principal(timedelta(minutes=-5))
        tokens: list[str] = []

        workers = [
            threading.Thread(target=lambda: tokens.append(manager.get_valid_access_token(principal)))
            for _ in range(5)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        self.assertEqual(len(calls), 1)
        self.assertEqual(tokens, ["access-new"] * 5)


if __name__ == "__main__":
    unittest.main()
