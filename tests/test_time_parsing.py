import unittest
from datetime import date, datetime, time, timedelta, timezone

from voicepilot.services.actions import InvalidParameters
from voicepilot.services.time_parsing import (
    find_day,
    parse_iso_datetime,
    resolve_clock_time,
    resolve_date_time,
    resolve_day,
    resolve_timeframe,
    resolve_zone,
)

MONDAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class ResolveDayTests(unittest.TestCase):
    def test_relative_days(self):
        self.assertEqual(resolve_day("tomorrow", MONDAY), date(2026, 3, 3))
        self.assertEqual(resolve_day("the day after tomorrow", MONDAY), date(2026, 3, 4))
        self.assertEqual(resolve_day("sometime", MONDAY), MONDAY)

    def test_weekday_names(self):
        self.assertEqual(resolve_day("friday", MONDAY), date(2026, 3, 6))
        self.assertEqual(resolve_day("monday", MONDAY), MONDAY)
        self.assertEqual(resolve_day("next monday", MONDAY), date(2026, 3, 9))

    def test_iso_date_wins(self):
        self.assertEqual(resolve_day("2026-04-10 at noon", MONDAY), date(2026, 4, 10))

    def test_month_names(self):
        self.assertEqual(resolve_day("March 10 at 3pm", MONDAY), date(2026, 3, 10))
        self.assertEqual(resolve_day("the 4th of april", MONDAY), date(2026, 4, 4))
        self.assertEqual(resolve_day("Sept 1, 2027", MONDAY), date(2027, 9, 1))

    def test_past_month_day_rolls_to_next_year(self):
        self.assertEqual(resolve_day("Jan 5", MONDAY), date(2027, 1, 5))

    def test_impossible_month_day_is_rejected(self):
        with self.assertRaises(InvalidParameters):
            resolve_day("February 30", MONDAY)

    def test_unrecognized_text_has_no_day(self):
        self.assertIsNone(find_day("sometime soon", MONDAY))
        self.assertEqual(find_day("today", MONDAY), MONDAY)


class ResolveClockTimeTests(unittest.TestCase):
    def test_meridiem_and_24_hour_forms(self):
        self.assertEqual(resolve_clock_time("3pm"), time(15, 0))
        self.assertEqual(resolve_clock_time("at 9:30 a.m."), time(9, 30))
        self.assertEqual(resolve_clock_time("12am"), time(0, 0))
        self.assertEqual(resolve_clock_time("16:45"), time(16, 45))

    def test_bare_hour_after_at(self):
        self.assertEqual(resolve_clock_time("tomorrow at 3"), time(15, 0))
        self.assertEqual(resolve_clock_time("at 3:30"), time(15, 30))
        self.assertEqual(resolve_clock_time("friday at 10"), time(10, 0))
        self.assertEqual(resolve_clock_time("at 18"), time(18, 0))

    def test_named_times(self):
        self.assertEqual(resolve_clock_time("noon"), time(12, 0))
        self.assertEqual(resolve_clock_time("tomorrow morning"), time(9, 0))
        self.assertEqual(resolve_clock_time("this evening"), time(19, 0))

    def test_unrecognized_time_is_none(self):
        self.assertIsNone(resolve_clock_time("tomorrow"))
        self.assertIsNone(resolve_clock_time("13pm"))


class ResolveDateTimeTests(unittest.TestCase):
    def test_defaults_to_two_pm_for_one_hour(self):
        start, end = resolve_date_time("tomorrow", "UTC", NOW)
        self.assertEqual((start.date(), start.hour, start.minute), (date(2026, 3, 3), 14, 0))
        self.assertEqual(end - start, timedelta(hours=1))

    def test_iso_datetime_is_localized_to_user_zone(self):
        start, _ = resolve_date_time("2026-03-05T10:00", "America/New_York", NOW, duration_minutes=30)
        self.assertEqual(start.utcoffset(), timedelta(hours=-5))
        self.assertEqual(start.hour, 10)

    def test_month_name_date_keeps_its_day(self):
        start, _ = resolve_date_time("March 10 at 3pm", "UTC", NOW)
        self.assertEqual(start, datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc))

    def test_bare_hour_is_used_instead_of_default(self):
        start, _ = resolve_date_time("tomorrow at 3", "UTC", NOW)
        self.assertEqual(start, datetime(2026, 3, 3, 15, 0, tzinfo=timezone.utc))

    def test_unrecognized_date_is_rejected(self):
        with self.assertRaises(InvalidParameters):
            resolve_date_time("whenever works", "UTC", NOW)

    def test_time_without_day_means_today(self):
        start, _ = resolve_date_time("at 4pm", "UTC", NOW)
        self.assertEqual(start, datetime(2026, 3, 2, 16, 0, tzinfo=timezone.utc))

    def test_invalid_timezone_falls_back_to_utc(self):
        self.assertIs(resolve_zone("Mars/Olympus"), timezone.utc)
        start, _ = resolve_date_time("tomorrow 3pm", "Mars/Olympus", NOW)
        self.assertEqual(start, datetime(2026, 3, 3, 15, 0, tzinfo=timezone.utc))

    def test_date_only_text_is_not_an_iso_datetime(self):
        self.assertIsNone(parse_iso_datetime("2026-03-05", timezone.utc))
        parsed = parse_iso_datetime("2026-03-05T09:00:00Z", timezone.utc)
        self.assertEqual(parsed, datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc))


class ResolveTimeframeTests(unittest.TestCase):
    def test_today_is_the_default(self):
        start, end, label = resolve_timeframe(None, "UTC", NOW)
        self.assertEqual(label, "today")
        self.assertEqual(start.date(), MONDAY)
        self.assertEqual(end - start, timedelta(days=1))

    def test_this_week_runs_sunday_to_saturday(self):
        start, end, label = resolve_timeframe("this week", "UTC", NOW)
        self.assertEqual(label, "this week")
        self.assertEqual(start.date(), date(2026, 3, 1))
        self.assertEqual(end.date(), date(2026, 3, 8))

    def test_next_week(self):
        start, _, _ = resolve_timeframe("next week", "UTC", NOW)
        self.assertEqual(start.date(), date(2026, 3, 8))

    def test_explicit_range(self):
        start, end, label = resolve_timeframe(
            None, "UTC", NOW, start_date="2026-03-10", end_date="2026-03-12"
        )
        self.assertEqual(start.date(), date(2026, 3, 10))
        self.assertEqual(end.date(), date(2026, 3, 13))
        self.assertEqual(label, "2026-03-10 to 2026-03-12")

    def test_weekday_timeframe(self):
        start, _, label = resolve_timeframe("thursday", "UTC", NOW)
        self.assertEqual(start.date(), date(2026, 3, 5))
        self.assertEqual(label, "thursday")


if __name__ == "__main__":
    unittest.main()
