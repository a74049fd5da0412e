import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

from voicepilot.services.google_oauth import GoogleOAuthService, GoogleTokenExchange
from voicepilot.services.principal_store import InMemoryPrincipalStore
from voicepilot.services.token_manager import Principal


def _service() -> GoogleOAuthService:
    return GoogleOAuthService(
        client_id="cid",
        client_secret="secret",
        redirect_uri="https://app.example.com/callback",
    )


def _response(status_code: int, payload=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


class GoogleOAuthServiceTests(unittest.TestCase):
    def test_connect_principal_stores_tokens_and_profile(self):
        service = _service()
        store = InMemoryPrincipalStore()
        with patch.object(
            service,
            "exchange_code",
            return_value=GoogleTokenExchange(
                access_token="new-access",
                refresh_token="new-refresh",
                token_type="Bearer",
                scope="openid",
                expires_in=3600,
            ),
        ), patch.object(
            service,
            "fetch_user_info",
            return_value={"email": "sam@example.com", "name": "Sam"},
        ):
            principal = service.connect_principal(store, "user-1", "code-1", "Europe/Berlin")

        stored = store.get("user-1")
        self.assertEqual(stored, principal)
        self.assertEqual(stored.refresh_token, "new-refresh")
        self.assertEqual(stored.timezone, "Europe/Berlin")
        self.assertEqual(stored.email, "sam@example.com")
        self.assertGreater(stored.token_expiry, datetime.now(timezone.utc) + timedelta(minutes=55))

    def test_reconnect_without_refresh_token_keeps_existing_one(self):
        service = _service()
        store = InMemoryPrincipalStore()
        store.put(
            Principal(
                user_id="user-1",
                access_token="old-access",
                refresh_token="old-refresh",
                token_expiry=None,
            )
        )
        with patch.object(
            service,
            "exchange_code",
            return_value=GoogleTokenExchange("new-access", None, "Bearer", None, 3600),
        ), patch.object(service, "fetch_user_info", return_value={}):
            principal = service.connect_principal(store, "user-1", "code-1")

        self.assertEqual(principal.access_token, "new-access")
        self.assertEqual(principal.refresh_token, "old-refresh")
        self.assertEqual(principal.timezone, "UTC")

    def test_missing_expires_in_defaults_to_one_hour(self):
        issued = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
        exchange = GoogleTokenExchange("a", None, None, None, None)
        self.assertEqual(exchange.expires_at(issued), issued + timedelta(hours=1))

    def test_authorization_url_requests_offline_access(self):
        url = _service().build_authorization_url(state="abc")
        query = parse_qs(urlparse(url).query)

        self.assertEqual(query["access_type"], ["offline"])
        self.assertEqual(query["state"], ["abc"])
        self.assertIn("https://www.googleapis.com/auth/calendar", query["scope"][0])

    def test_unconfigured_service_refuses_to_build_url(self):
        service = GoogleOAuthService(client_id="", client_secret=None, redirect_uri=None)
        self.assertFalse(service.is_configured())
        with self.assertRaises(RuntimeError):
            service.build_authorization_url()

    @patch("voicepilot.services.google_oauth.requests.post")
    def test_refresh_for_principal_posts_refresh_grant(self, mock_post):
        mock_post.return_value = _response(200, {"access_token": "fresh", "expires_in": "1800"})

        refreshed = _service().refresh_for_principal("refresh-1")

        self.assertEqual(refreshed.access_token, "fresh")
        self.assertIsNone(refreshed.refresh_token)
        sent = mock_post.call_args.kwargs["data"]
        self.assertEqual(sent["grant_type"], "refresh_token")
        self.assertEqual(sent["refresh_token"], "refresh-1")

    @patch("voicepilot.services.google_oauth.requests.post")
    def test_refresh_error_is_raised_with_provider_reason(self, mock_post):
        mock_post.return_value = _response(
            400, {"error": "invalid_grant", "error_description": "Token has been revoked."}
        )

        with self.assertRaises(RuntimeError) as ctx:
            _service().refresh_access_token("refresh-1")

        self.assertIn("invalid_grant", str(ctx.exception))

    @patch("voicepilot.services.google_oauth.requests.post")
    def test_response_without_access_token_is_rejected(self, mock_post):
        mock_post.return_value = _response(200, {"token_type": "Bearer"})
        with self.assertRaises(RuntimeError):
            _service().refresh_access_token("refresh-1")


if __name__ == "__main__":
    unittest.main()
