import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from voicepilot.services.principal_store import InMemoryPrincipalStore, SupabasePrincipalStore
from voicepilot.services.token_manager import Principal


def _response(status_code: int, payload=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    response.json.return_value = payload
    return response


def _store() -> SupabasePrincipalStore:
    return SupabasePrincipalStore("https://db.example.com/", "service-key", table="principals")


class InMemoryPrincipalStoreTests(unittest.TestCase):
    def test_returns_copies(self):
        store = InMemoryPrincipalStore()
        store.put(Principal("user-1", "access-1", "refresh-1", None))

        loaded = store.get("user-1")
        loaded.access_token = "changed"

        self.assertEqual(store.get("user-1").access_token, "access-1")
        self.assertIsNone(store.get("user-2"))


class SupabasePrincipalStoreTests(unittest.TestCase):
    @patch("voicepilot.services.supabase_rest.requests.get")
    def test_get_parses_row(self, mock_get):
        mock_get.return_value = _response(
            200,
            [
                {
                    "user_id": "user-1",
                    "access_token": "access-1",
                    "refresh_token": "refresh-1",
                    "token_expiry": "2026-03-02T16:00:00Z",
                    "timezone": "Europe/Berlin",
                    "email": None,
                    "name": "Sam",
                }
            ],
        )

        principal = _store().get("user-1")

        self.assertEqual(principal.token_expiry, datetime(2026, 3, 2, 16, 0, tzinfo=timezone.utc))
        self.assertEqual(principal.timezone, "Europe/Berlin")
        self.assertIsNone(principal.email)
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], "https://db.example.com/rest/v1/principals")
        self.assertEqual(kwargs["params"]["user_id"], "eq.user-1")

    @patch("voicepilot.services.supabase_rest.requests.get")
    def test_get_missing_row_returns_none(self, mock_get):
        mock_get.return_value = _response(200, [])
        self.assertIsNone(_store().get("user-1"))

    @patch("voicepilot.services.supabase_rest.requests.post")
    def test_put_upserts_on_user_id(self, mock_post):
        mock_post.return_value = _response(201)

        _store().put(
            Principal(
                "user-1",
                "access-1",
                "refresh-1",
                datetime(2026, 3, 2, 16, 0),
            )
        )

        kwargs = mock_post.call_args.kwargs
        self.assertEqual(kwargs["params"], {"on_conflict": "user_id"})
        self.assertIn("merge-duplicates", kwargs["headers"]["Prefer"])
        self.assertEqual(kwargs["json"]["token_expiry"], "2026-03-02T16:00:00+00:00")

    @patch("voicepilot.services.supabase_rest.requests.post")
    def test_http_error_raises(self, mock_post):
        mock_post.return_value = _response(500, text="boom")
        with self.assertRaises(RuntimeError):
            _store().put(Principal("user-1", "access-1", None, None))

    def test_unconfigured_store_raises(self):
        store = SupabasePrincipalStore(None, None)
        self.assertFalse(store.is_configured())
        with self.assertRaises(RuntimeError):
            store.get("user-1")


if __name__ == "__main__":
    unittest.main()
