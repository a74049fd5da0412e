import unittest
from datetime import datetime, timedelta, timezone

from voicepilot.services.prefetch import ContextPrefetcher, PrefetchedContext
from voicepilot.services.token_manager import Principal, TokenLifecycleManager
from voicepilot.tools.base import (
    CalendarEvent,
    CalendarProvider,
    DownstreamProviderError,
    MailMessage,
    MailProvider,
)

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class _Calendar(CalendarProvider):
    def list_events(self, access_token, start, end, query=None, max_results=25):
        return [CalendarEvent("evt-1", "Standup", NOW + timedelta(hours=1), NOW + timedelta(hours=2))]

    def create_event(self, access_token, draft, timezone_name):
        raise NotImplementedError

    def update_event(self, access_token, event_id, draft, timezone_name):
        raise NotImplementedError

    def delete_event(self, access_token, event_id):
        raise NotImplementedError

    def busy_intervals(self, access_token, start, end, timezone_name):
        return []


class _BrokenMail(MailProvider):
    def search_messages(self, access_token, query, max_results=10):
        raise DownstreamProviderError("Gmail API failed (503).", "provider_unavailable", 503)

    def send_message(self, access_token, message):
        raise NotImplementedError


def _principal() -> Principal:
    return Principal(
        user_id="user-1",
        access_token="access-1",
        refresh_token="refresh-1",
        token_expiry=NOW + timedelta(hours=1),
    )


class ContextPrefetcherTests(unittest.TestCase):
    def test_failed_read_yields_empty_list_and_others_succeed(self):
        manager = TokenLifecycleManager(refresh=lambda token: None, clock=lambda: NOW)
        prefetcher = ContextPrefetcher(_Calendar(), _BrokenMail(), manager)

        with self.assertLogs("voicepilot.services.prefetch", level="WARNING"):
            snapshot = prefetcher.prefetch(_principal(), now=NOW)

        self.assertEqual(snapshot.recent_emails, [])
        self.assertEqual(len(snapshot.today_events), 1)
        self.assertEqual(len(snapshot.week_events), 1)
        self.assertEqual(snapshot.recent_events[0].title, "Standup")

    def test_empty_snapshot_renders_nothing(self):
        self.assertTrue(PrefetchedContext().is_empty())
        self.assertEqual(PrefetchedContext().render_for_prompt(), "")

    def test_snapshot_renders_events_and_emails(self):
        snapshot = PrefetchedContext(
            today_events=[CalendarEvent("evt-1", "Standup", NOW, None)],
            recent_emails=[MailMessage("m1", "t1", "ana@example.com", "Invoice", "", unread=True)],
        )

        rendered = snapshot.render_for_prompt()

        self.assertTrue(rendered.startswith("USER DATA SNAPSHOT"))
        self.assertIn("Standup", rendered)
        self.assertIn("[id: evt-1]", rendered)
        self.assertIn("Invoice from ana@example.com (unread)", rendered)


if __name__ == "__main__":
    unittest.main()
