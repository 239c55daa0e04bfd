from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from reward_ledger.streaks import advance_streak, next_streak, to_calendar_day

TODAY = date(2026, 3, 10)
YESTERDAY = TODAY - timedelta(days=1)
TWO_DAYS_AGO = TODAY - timedelta(days=2)


class TestNextStreak:
    def test_first_activity_starts_at_1(self):
        assert next_streak(None, 0, TODAY) == 1

    def test_consecutive_day_increments(self):
        assert next_streak(YESTERDAY, 5, TODAY) == 6

    def test_same_day_is_unchanged(self):
        assert next_streak(TODAY, 5, TODAY) == 5

    def test_gap_resets_to_1(self):
        assert next_streak(TWO_DAYS_AGO, 10, TODAY) == 1

    def test_month_boundary_counts_as_consecutive(self):
        assert next_streak(date(2026, 2, 28), 3, date(2026, 3, 1)) == 4


class TestAdvanceStreak:
    def test_longest_follows_new_record(self):
        assert advance_streak(YESTERDAY, 5, 5, TODAY) == (6, 6)

    def test_longest_kept_after_reset(self):
        assert advance_streak(TWO_DAYS_AGO, 4, 9, TODAY) == (1, 9)


class TestCalendarDay:
    def test_aware_timestamp_is_cut_in_zone(self):
        late_utc = datetime(2026, 3, 10, 23, 30, tzinfo=timezone.utc)
        assert to_calendar_day(late_utc, timezone.utc) == date(2026, 3, 10)
        assert to_calendar_day(late_utc, ZoneInfo("Asia/Kolkata")) == date(2026, 3, 11)

    def test_naive_timestamp_taken_as_is(self):
        assert to_calendar_day(datetime(2026, 3, 10, 23, 59), ZoneInfo("Asia/Kolkata")) == date(2026, 3, 10)
