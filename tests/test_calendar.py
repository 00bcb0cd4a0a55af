"""
Tests for the day-by-day timeline and the workday calendar.
"""
from datetime import date

from logic import AdvancedCalendar, calculate_calendar_duration


class TestCalendarDuration:

    def test_no_active_work(self, make_result):
        cal = calculate_calendar_duration([make_result(duration=0.0)], weather_days=2)
        assert cal.timeline == []
        assert cal.work_days == 0
        assert cal.total_days == 2

    def test_days_from_early_dates(self, make_result):
        rows = [
            make_result("A", duration=2.0, early_start=0.0, early_finish=2.0),
            make_result("B", duration=1.5, early_start=2.0, early_finish=3.5),
        ]
        cal = calculate_calendar_duration(rows, weather_days=2)
        assert cal.work_days == 4
        assert cal.total_days == 6
        assert [d.activity_ids for d in cal.timeline[:4]] == [["A"], ["A"], ["B"], ["B"]]
        assert [d.kind for d in cal.timeline] == ["work"] * 4 + ["weather"] * 2
        assert [d.day for d in cal.timeline] == [1, 2, 3, 4, 5, 6]

    def test_overlapping_activities_share_a_day(self, make_result):
        rows = [
            make_result("A", duration=1.0, early_start=0.0, early_finish=1.0),
            make_result("B", duration=1.0, early_start=0.0, early_finish=1.0),
        ]
        cal = calculate_calendar_duration(rows)
        assert cal.timeline[0].activity_ids == ["A", "B"]

    def test_dates_skip_weekends(self, make_result):
        rows = [make_result("A", duration=3.0, early_start=0.0, early_finish=3.0)]
        # 2026-01-02 is a Friday
        cal = calculate_calendar_duration(rows, calendar=AdvancedCalendar("2026-01-02"))
        assert [d.date for d in cal.timeline] == [date(2026, 1, 2), date(2026, 1, 5), date(2026, 1, 6)]


class TestAdvancedCalendar:

    def test_holidays_are_not_workdays(self):
        cal = AdvancedCalendar("2026-07-01", holidays=["2026-07-03"])
        assert not cal.is_workday("2026-07-03")
        assert cal.workday_dates(3) == [date(2026, 7, 1), date(2026, 7, 2), date(2026, 7, 6)]

