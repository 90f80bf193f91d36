"""Unit tests for the previous-week period resolver."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest

from app.services.settlement.period import SettlementPeriod, resolve_previous_week

PACIFIC = ZoneInfo("America/Los_Angeles")


def _pacific(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=PACIFIC)


class TestResolvePreviousWeek:
    @pytest.mark.parametrize(
        "today",
        [
            (2026, 10, 12),  # Monday
            (2026, 10, 14),  # Wednesday
            (2026, 10, 17),  # Saturday
        ],
    )
    def test_any_day_of_the_week_resolves_the_same_closed_week(self, today):
        period = resolve_previous_week(_pacific(*today), "America/Los_Angeles")
        assert period == SettlementPeriod(start=date(2026, 10, 5), end=date(2026, 10, 11))

    def test_wednesday_ends_on_the_sunday_three_days_back(self):
        period = resolve_previous_week(_pacific(2026, 10, 14), "America/Los_Angeles")
        assert period.end == date(2026, 10, 11)
        assert period.end.weekday() == 6
        assert period.start.weekday() == 0

    def test_monday_ends_yesterday(self):
        period = resolve_previous_week(_pacific(2026, 10, 12, 6), "America/Los_Angeles")
        assert period.end == date(2026, 10, 11)
        assert (period.end - period.start).days == 6

    def test_sunday_does_not_close_its_own_week(self):
        period = resolve_previous_week(_pacific(2026, 10, 18, 23), "America/Los_Angeles")
        assert period == SettlementPeriod(start=date(2026, 10, 5), end=date(2026, 10, 11))

    def test_today_is_taken_in_the_business_timezone(self):
        # 03:00 UTC Monday is still Sunday evening in Pacific time
        now = datetime(2026, 10, 12, 3, 0, tzinfo=timezone.utc)
        period = resolve_previous_week(now, "America/Los_Angeles")
        assert period == SettlementPeriod(start=date(2026, 9, 28), end=date(2026, 10, 4))

        # ...while in UTC it is already Monday
        utc_period = resolve_previous_week(now, "UTC")
        assert utc_period.end == date(2026, 10, 11)

    def test_naive_now_is_read_as_utc(self):
        naive = datetime(2026, 10, 12, 3, 0)
        aware = naive.replace(tzinfo=timezone.utc)
        assert resolve_previous_week(naive, "America/Los_Angeles") == resolve_previous_week(
            aware, "America/Los_Angeles"
        )

    def test_year_boundary(self):
        # Friday 2027-01-01 -> week of Mon 2026-12-21 .. Sun 2026-12-27
        period = resolve_previous_week(_pacific(2027, 1, 1), "America/Los_Angeles")
        assert period == SettlementPeriod(start=date(2026, 12, 21), end=date(2026, 12, 27))

    def test_defaults_to_wall_clock(self):
        period = resolve_previous_week()
        assert period.start.weekday() == 0
        assert period.end.weekday() == 6
        assert period.end < datetime.now(PACIFIC).date()


class TestSettlementPeriod:
    def test_window_covers_whole_days(self):
        period = SettlementPeriod(start=date(2026, 10, 5), end=date(2026, 10, 11))
        assert period.window_start == datetime(2026, 10, 5, 0, 0, 0)
        assert period.window_end == datetime.combine(date(2026, 10, 11), time.max)
        assert period.window_end.hour == 23
        assert period.window_end.minute == 59
        assert period.window_end.second == 59

    def test_as_dict(self):
        period = SettlementPeriod(start=date(2026, 10, 5), end=date(2026, 10, 11))
        assert period.as_dict() == {"start": "2026-10-05", "end": "2026-10-11"}
